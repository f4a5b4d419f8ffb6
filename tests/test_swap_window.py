"""Tests for the swap window state machine and the per-saga cycle snapshot."""

from datetime import datetime, timedelta, timezone

import pytest

from club.services.swap_window import SwapWindow, load_cycle_snapshot, resolve_swap_window
from db.models import CycleStatus, RotationCycle
from tests.conftest import AFTER_WINDOW, NOW, WINDOW_CLOSES, WINDOW_OPENS, FixedClock


def _cycle(opens_at=WINDOW_OPENS, closes_at=WINDOW_CLOSES) -> RotationCycle:
    return RotationCycle(
        id=1,
        name="2026-11",
        status=CycleStatus.active,
        swap_window_opens_at=opens_at,
        swap_window_closes_at=closes_at,
    )


class TestResolveSwapWindow:
    def test_open_inside_interval(self):
        assert resolve_swap_window(_cycle(), NOW) is SwapWindow.OPEN

    def test_closed_after_interval(self):
        assert resolve_swap_window(_cycle(), AFTER_WINDOW) is SwapWindow.CLOSED

    def test_closed_before_interval(self):
        assert resolve_swap_window(_cycle(), WINDOW_OPENS - timedelta(seconds=1)) is SwapWindow.CLOSED

    def test_start_inclusive_end_exclusive(self):
        assert resolve_swap_window(_cycle(), WINDOW_OPENS) is SwapWindow.OPEN
        assert resolve_swap_window(_cycle(), WINDOW_CLOSES) is SwapWindow.CLOSED

    def test_no_cycle_is_closed(self):
        assert resolve_swap_window(None, NOW) is SwapWindow.CLOSED

    def test_missing_boundary_is_closed(self):
        assert resolve_swap_window(_cycle(closes_at=None), NOW) is SwapWindow.CLOSED

    def test_naive_boundaries_read_as_utc(self):
        cycle = _cycle(
            opens_at=WINDOW_OPENS.replace(tzinfo=None),
            closes_at=WINDOW_CLOSES.replace(tzinfo=None),
        )
        assert resolve_swap_window(cycle, NOW) is SwapWindow.OPEN

    def test_other_timezone_clock(self):
        denver = timezone(timedelta(hours=-6))
        # 2026-10-24 20:00 -06:00 == 2026-10-25 02:00 UTC, past the close
        assert resolve_swap_window(_cycle(), datetime(2026, 10, 24, 20, 0, tzinfo=denver)) is SwapWindow.CLOSED

    def test_metadata_values(self):
        assert SwapWindow.OPEN.value == "opened"
        assert SwapWindow.CLOSED.value == "closed"


class TestCycleSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_of_active_cycle(self, session, seeded):
        snapshot = await load_cycle_snapshot(session, FixedClock(NOW))

        assert snapshot.cycle_id == seeded["cycle_id"]
        assert snapshot.is_open
        assert snapshot.metadata_value() == "opened"
        assert {o.track_value for o in snapshot.offerings} == {"hiphop", "rock", "jazz"}

    @pytest.mark.asyncio
    async def test_snapshot_closed_window(self, session, seeded):
        snapshot = await load_cycle_snapshot(session, FixedClock(AFTER_WINDOW))

        assert snapshot.cycle_id == seeded["cycle_id"]
        assert not snapshot.is_open
        assert snapshot.metadata_value() == "closed"

    @pytest.mark.asyncio
    async def test_offering_lookup(self, session, seeded):
        snapshot = await load_cycle_snapshot(session, FixedClock(NOW))

        offering = snapshot.offering_for_track("rock")
        assert offering.product_id == 202
        assert offering.newsub_variant_ref == 2022
        assert offering.swap_variant_ref == 2021
        assert snapshot.offering_for_track("polka") is None

    @pytest.mark.asyncio
    async def test_swap_only_rows_are_not_default_offerings(self, session, seeded):
        snapshot = await load_cycle_snapshot(session, FixedClock(NOW))

        assert snapshot.is_default_offering(101)
        assert not snapshot.is_default_offering(404)

    @pytest.mark.asyncio
    async def test_no_active_cycle(self, session):
        snapshot = await load_cycle_snapshot(session, FixedClock(NOW))

        assert snapshot.cycle_id is None
        assert snapshot.window is SwapWindow.CLOSED
        assert snapshot.offerings == []
