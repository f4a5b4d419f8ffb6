"""
Swap window state machine.

The window is derived from the active cycle's boundaries and a clock; it is
never stored as ground truth. Subscriptions only carry a snapshot of it in
their metadata.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from db.dal import cycle_dal
from db.models import RotationCycle

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SwapWindow(enum.Enum):
    OPEN = "opened"
    CLOSED = "closed"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_swap_window(cycle: Optional[RotationCycle], now: datetime) -> SwapWindow:
    """OPEN iff ``now`` lies in ``[opens_at, closes_at)`` of the active cycle."""
    if cycle is None:
        return SwapWindow.CLOSED
    opens_at = cycle.swap_window_opens_at
    closes_at = cycle.swap_window_closes_at
    if opens_at is None or closes_at is None:
        return SwapWindow.CLOSED
    now = _as_utc(now)
    if _as_utc(opens_at) <= now < _as_utc(closes_at):
        return SwapWindow.OPEN
    return SwapWindow.CLOSED


@dataclass(frozen=True)
class CycleOffering:
    product_id: int
    track_value: str
    newsub_variant_ref: Optional[int] = None
    swap_variant_ref: Optional[int] = None


@dataclass(frozen=True)
class CycleSnapshot:
    """Active cycle as seen once at the start of a saga."""

    cycle_id: Optional[int]
    window: SwapWindow
    offerings: List[CycleOffering] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.window is SwapWindow.OPEN

    def offering_for_track(self, track_value: str) -> Optional[CycleOffering]:
        for offering in self.offerings:
            if offering.track_value == track_value:
                return offering
        return None

    def is_default_offering(self, product_id: int) -> bool:
        return any(offering.product_id == product_id for offering in self.offerings)

    def metadata_value(self) -> str:
        return self.window.value


async def load_cycle_snapshot(session: AsyncSession, clock: Clock = utc_now) -> CycleSnapshot:
    cycle = await cycle_dal.get_active_cycle(session)
    if cycle is None:
        return CycleSnapshot(cycle_id=None, window=SwapWindow.CLOSED)

    rows: List[Dict[str, Any]] = await cycle_dal.get_cycle_offerings(session, cycle.id)
    offerings = [
        CycleOffering(
            product_id=row["product_id"],
            track_value=row["track_value"],
            newsub_variant_ref=row["newsub_variant_ref"],
            swap_variant_ref=row["swap_variant_ref"],
        )
        for row in rows
    ]
    return CycleSnapshot(
        cycle_id=cycle.id,
        window=resolve_swap_window(cycle, clock()),
        offerings=offerings,
    )
