import logging
from typing import Any, Dict, Optional

from config.settings import Settings
from club.cache import RedisCache
from club.services.billing_client import BillingEngine, HttpBillingEngine
from club.services.dispatcher import JobQueue, Notifier, SideEffectDispatcher
from club.services.feedback_service import FeedbackService
from club.services.inventory_ledger import InventoryLedger
from club.services.job_queue import RedisJobQueue
from club.services.notifier import RedisNotifier
from club.services.storefront_client import HttpStorefrontClient, Storefront
from club.services.subscription import SubscriptionBillingService, SubscriptionCoreService
from club.services.swap_window import Clock, utc_now
from club.services.track_resolver import TrackResolver


def build_core_services(
    settings: Settings,
    billing: Optional[BillingEngine] = None,
    storefront: Optional[Storefront] = None,
    queue: Optional[JobQueue] = None,
    notifier: Optional[Notifier] = None,
    cache: Optional[RedisCache] = None,
    clock: Clock = utc_now,
) -> Dict[str, Any]:
    """
    Build and wire all core services with explicit dependency injection.

    Collaborators left as None are built from settings (aiohttp clients,
    Redis queue/notifier/cache); tests pass in-memory fakes instead.

    Returns:
        Dictionary of initialized services, keyed the way handlers look them up
    """
    billing = billing or HttpBillingEngine(settings)
    storefront = storefront or HttpStorefrontClient(settings)
    if queue is None:
        queue = RedisJobQueue.from_settings(settings)
    if notifier is None:
        # Pub/sub rides on the queue connection
        notifier = RedisNotifier(queue.redis)
    if cache is None and settings.REDIS_CACHE_ENABLED:
        cache = RedisCache(settings)

    dispatcher = SideEffectDispatcher(queue, notifier, settings)
    ledger = InventoryLedger(settings)
    track_resolver = TrackResolver(settings, cache)

    subscription_core_service = SubscriptionCoreService(
        settings,
        billing=billing,
        storefront=storefront,
        ledger=ledger,
        track_resolver=track_resolver,
        dispatcher=dispatcher,
        clock=clock,
    )
    subscription_billing_service = SubscriptionBillingService(settings, billing)
    feedback_service = FeedbackService(settings, billing, storefront, dispatcher, clock=clock)

    logging.info("Core services wired")
    return {
        "billing": billing,
        "storefront": storefront,
        "job_queue": queue,
        "notifier": notifier,
        "cache": cache,
        "dispatcher": dispatcher,
        "inventory_ledger": ledger,
        "track_resolver": track_resolver,
        "subscription_core_service": subscription_core_service,
        "subscription_billing_service": subscription_billing_service,
        "feedback_service": feedback_service,
    }
