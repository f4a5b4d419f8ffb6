import pytest

from club.errors import OutOfStockError
from club.services.dispatcher import EffectsNotSealedError, JobKind, PendingEffects, SideEffectDispatcher
from club.services.inventory_ledger import InventoryLedger
from club.utils.transaction_context import TransactionContext
from tests.conftest import FakeNotifier, FakeQueue, counters


def _sealed(**jobs) -> PendingEffects:
    effects = PendingEffects()
    for kind, payload in jobs.items():
        effects.enqueue(kind, payload)
    effects.seal()
    return effects


class TestPendingEffects:
    def test_collects_until_sealed(self):
        effects = PendingEffects()
        effects.enqueue(JobKind.SYNC_SWAP_ANALYSIS, {"subscriptionId": "sub_1"})
        effects.publish("swaps-dashboard", "refresh-cancellations", {"track": "rock"})

        assert not effects.is_empty()
        effects.seal()

        with pytest.raises(RuntimeError):
            effects.enqueue(JobKind.SYNC_SWAP_ANALYSIS, {})

    def test_empty_batch(self):
        assert PendingEffects().is_empty()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unsealed_batch_is_refused(self, settings):
        queue = FakeQueue()
        dispatcher = SideEffectDispatcher(queue, FakeNotifier(), settings)
        effects = PendingEffects()
        effects.enqueue(JobKind.SWAPS_FEEDBACK, {})

        with pytest.raises(EffectsNotSealedError):
            await dispatcher.dispatch(effects)
        assert queue.jobs == []

    @pytest.mark.asyncio
    async def test_delivers_jobs_with_default_priority(self, settings):
        queue = FakeQueue()
        dispatcher = SideEffectDispatcher(queue, FakeNotifier(), settings)

        report = await dispatcher.dispatch(_sealed(**{JobKind.SWAPS_FEEDBACK: {"swapFeedback": {}}}))

        assert report.clean
        assert report.delivered_jobs == 1
        assert queue.jobs[0]["priority"] == settings.JOB_DEFAULT_PRIORITY

    @pytest.mark.asyncio
    async def test_retries_transient_queue_failures(self, settings):
        queue = FakeQueue(failures_before_success=2)
        dispatcher = SideEffectDispatcher(queue, FakeNotifier(), settings)

        report = await dispatcher.dispatch(_sealed(**{JobKind.SYNC_SWAP_ANALYSIS: {"subscriptionId": "sub_1"}}))

        assert report.clean
        assert queue.attempts == 3
        assert len(queue.jobs) == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_reported(self, settings):
        queue = FakeQueue(failures_before_success=10)
        dispatcher = SideEffectDispatcher(queue, FakeNotifier(), settings)

        report = await dispatcher.dispatch(_sealed(**{JobKind.SYNC_SWAP_ANALYSIS: {"subscriptionId": "sub_1"}}))

        assert not report.clean
        assert [job.kind for job in report.failed_jobs] == [JobKind.SYNC_SWAP_ANALYSIS]
        assert queue.attempts == settings.DISPATCH_MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_notification_failure_is_tolerated(self, settings):
        queue = FakeQueue()
        dispatcher = SideEffectDispatcher(queue, FakeNotifier(fail=True), settings)
        effects = PendingEffects()
        effects.publish("swaps-dashboard", "refresh-cancellations", {"track": "rock"})
        effects.enqueue(JobKind.SWAPS_FEEDBACK, {})
        effects.seal()

        report = await dispatcher.dispatch(effects)

        assert report.failed_notifications == 1
        assert report.delivered_jobs == 1

    @pytest.mark.asyncio
    async def test_failed_deferred_call_is_recorded(self, settings):
        dispatcher = SideEffectDispatcher(FakeQueue(), FakeNotifier(), settings)
        seen = []

        async def ok(value):
            seen.append(value)

        async def boom():
            raise ConnectionError("storefront down")

        effects = PendingEffects()
        effects.after_commit("tag member", ok, "sh_1")
        effects.after_commit("variant fallback", boom)
        effects.seal()

        report = await dispatcher.dispatch(effects)

        assert seen == ["sh_1"]
        assert report.failed_calls == ["variant fallback"]


class TestTransactionContext:
    @pytest.mark.asyncio
    async def test_commit_seals_effects(self, session, seeded):
        effects = PendingEffects()
        async with TransactionContext(session, effects=effects):
            effects.enqueue(JobKind.SYNC_SWAP_ANALYSIS, {})

        assert effects.sealed

    @pytest.mark.asyncio
    async def test_rollback_leaves_effects_unsealed(self, settings, session, seeded):
        ledger = InventoryLedger(settings)
        effects = PendingEffects()

        with pytest.raises(OutOfStockError):
            async with TransactionContext(session, effects=effects):
                await ledger.reserve_swap(session, seeded["cycle_id"], 101)
                effects.enqueue(JobKind.ADJUST_VARIANT_INVENTORY, {"variantId": 1011, "availableAdjustment": -1})
                await ledger.reserve_swap(session, seeded["cycle_id"], 303)

        assert not effects.sealed
        assert (await counters(session, seeded["cycle_id"], 101))["swap_qty"] == 3

    @pytest.mark.asyncio
    async def test_explicit_commit_seals_before_exit(self, settings, session, seeded):
        ledger = InventoryLedger(settings)
        effects = PendingEffects()

        with pytest.raises(ConnectionError):
            async with TransactionContext(session, effects=effects) as tx:
                await ledger.reserve_swap(session, seeded["cycle_id"], 101)
                await tx.commit()
                raise ConnectionError("billing down")

        assert effects.sealed
        assert tx.committed
