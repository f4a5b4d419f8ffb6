"""
Subscription Services Module

Сервисы подписок: оркестратор саг (core), представления биллинга
(billing), правила и нормализация (helpers), модель метаданных (metadata).
"""

from club.services.subscription.helpers import (
    NormalizedSubscriptions,
    SubscriptionRulesHelper,
    normalize_subscriptions,
)
from club.services.subscription.metadata import (
    GiftDetails,
    ProductSelection,
    SubscriptionMetadata,
)
from club.services.subscription.core import SubscriptionCoreService
from club.services.subscription.billing import SubscriptionBillingService

__all__ = [
    "NormalizedSubscriptions",
    "SubscriptionRulesHelper",
    "normalize_subscriptions",
    "GiftDetails",
    "ProductSelection",
    "SubscriptionMetadata",
    "SubscriptionCoreService",
    "SubscriptionBillingService",
]
