"""
Side-Effect Dispatcher

Двухфазная модель саги:
1. Транзакционное ядро (леджер + биллинг) только собирает PendingEffects.
2. После подтвержденного commit пакет запечатывается и передается
   диспетчеру, который ставит задачи в очередь и публикует уведомления.

Ошибки второй фазы не откатывают сагу и не роняют запрос: задачи
повторяются, исчерпавшие попытки логируются с полным payload для ручного
повтора.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from config.settings import Settings

logger = logging.getLogger(__name__)


class JobKind:
    """Queue job kinds consumed by the background workers."""

    ADJUST_VARIANT_INVENTORY = "adjust_variant_inventory_job"
    ADJUST_INVENTORY_AFTER_SWAP = "adjust_inventory_after_swap_job"
    SYNC_SWAP_ANALYSIS = "sync_swap_analysis_job"
    SEND_SWAP_CONFIRMATION_EMAIL = "send_swap_confirmation_email_job"
    SUBMIT_CANCELLATION_QUIZ = "submit_cancellation_quiz_job"
    DEACTIVATE_CANCELLATION_QUIZ = "deactivate_cancellation_quiz_job"
    SWAPS_FEEDBACK = "swaps-feedback-job"


class JobQueue(Protocol):
    """At-least-once job queue, unordered across kinds."""

    async def enqueue(
        self,
        kind: str,
        payload: Dict[str, Any],
        priority: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> str:
        ...


class Notifier(Protocol):
    """Fire-and-forget real-time notifications."""

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        ...


@dataclass
class QueuedJob:
    kind: str
    payload: Dict[str, Any]
    priority: Optional[int] = None
    delay: Optional[float] = None


@dataclass
class Notification:
    channel: str
    event: str
    payload: Dict[str, Any]


@dataclass
class DeferredCall:
    label: str
    func: Callable[..., Awaitable[Any]]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


class EffectsNotSealedError(RuntimeError):
    pass


class PendingEffects:
    """Side effects collected during phase 1; dispatchable only once sealed."""

    def __init__(self):
        self.jobs: List[QueuedJob] = []
        self.notifications: List[Notification] = []
        self.calls: List[DeferredCall] = []
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self._sealed = True

    def _ensure_open(self):
        if self._sealed:
            raise RuntimeError("PendingEffects already sealed; collect effects before commit")

    def enqueue(
        self,
        kind: str,
        payload: Dict[str, Any],
        priority: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> None:
        self._ensure_open()
        self.jobs.append(QueuedJob(kind=kind, payload=payload, priority=priority, delay=delay))

    def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        self._ensure_open()
        self.notifications.append(Notification(channel=channel, event=event, payload=payload))

    def after_commit(self, label: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> None:
        self._ensure_open()
        self.calls.append(DeferredCall(label=label, func=func, args=args, kwargs=kwargs))

    def is_empty(self) -> bool:
        return not (self.jobs or self.notifications or self.calls)


@dataclass
class DispatchReport:
    delivered_jobs: int = 0
    failed_jobs: List[QueuedJob] = field(default_factory=list)
    published: int = 0
    failed_notifications: int = 0
    failed_calls: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.failed_jobs or self.failed_notifications or self.failed_calls)


class SideEffectDispatcher:
    def __init__(self, queue: JobQueue, notifier: Notifier, settings: Settings):
        self.queue = queue
        self.notifier = notifier
        self.settings = settings

    async def dispatch(self, effects: PendingEffects) -> DispatchReport:
        if not effects.sealed:
            raise EffectsNotSealedError("Refusing to dispatch side effects before commit is confirmed")

        report = DispatchReport()

        for job in effects.jobs:
            if await self._enqueue_with_retry(job):
                report.delivered_jobs += 1
            else:
                report.failed_jobs.append(job)

        for notification in effects.notifications:
            try:
                await self.notifier.publish(notification.channel, notification.event, notification.payload)
                report.published += 1
            except Exception as e:
                report.failed_notifications += 1
                logger.warning(
                    f"Notification {notification.channel}/{notification.event} not delivered: {e}"
                )

        for call in effects.calls:
            try:
                await call.func(*call.args, **call.kwargs)
            except Exception as e:
                report.failed_calls.append(call.label)
                logger.error(f"Post-commit call '{call.label}' failed: {e}", exc_info=True)

        if not report.clean:
            logger.error(
                f"Post-commit dispatch incomplete: {len(report.failed_jobs)} job(s), "
                f"{report.failed_notifications} notification(s), {len(report.failed_calls)} call(s) failed"
            )
        return report

    async def enqueue_job(
        self,
        kind: str,
        payload: Dict[str, Any],
        priority: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> bool:
        """Single job from a post-commit call, with the same retry policy as ``dispatch``."""
        return await self._enqueue_with_retry(QueuedJob(kind=kind, payload=payload, priority=priority, delay=delay))

    async def _enqueue_with_retry(self, job: QueuedJob) -> bool:
        attempts = max(1, self.settings.DISPATCH_MAX_ATTEMPTS)
        priority = job.priority if job.priority is not None else self.settings.JOB_DEFAULT_PRIORITY

        for attempt in range(1, attempts + 1):
            try:
                await self.queue.enqueue(job.kind, job.payload, priority=priority, delay=job.delay)
                return True
            except Exception as e:
                logger.warning(f"Enqueue of {job.kind} failed (attempt {attempt}/{attempts}): {e}")
                if attempt < attempts:
                    await asyncio.sleep(self.settings.DISPATCH_RETRY_DELAY_SECONDS * attempt)

        logger.error(
            f"Job {job.kind} dropped from dispatch after {attempts} attempts, replay required. "
            f"payload={job.payload}"
        )
        return False
