"""
Subscription Helper Classes

Правила, общие для операций подписки: нормализация списка подписок
биллинга, проверки типа/купона/адреса/плана, расчет даты старта и
bridge-купона при смене срока.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from config.settings import Settings
from club.errors import IntegrityError, ValidationError
from club.services.subscription.metadata import SUBSCRIPTION_TYPES, SubscriptionMetadata

LIVE_PRIMARY_STATUSES = ("active", "future", "non_renewing")
PRIMARY_TYPES = ("primary", "gift")
REQUIRED_ADDRESS_FIELDS = ("last_name", "address1", "city", "zip", "country", "phone")


@dataclass
class NormalizedSubscriptions:
    primary: Optional[Dict[str, Any]] = None
    addons: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def primary_id(self) -> Optional[str]:
        return self.primary.get("id") if self.primary else None

    @property
    def primary_plan_id(self) -> Optional[str]:
        return self.primary.get("plan_id") if self.primary else None

    @property
    def primary_status(self) -> Optional[str]:
        return self.primary.get("status") if self.primary else None


def unwrap(entries: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Billing list entries are ``{"subscription": {...}}``; return the inner objects."""
    result = []
    for entry in entries or []:
        subscription = entry.get("subscription") if isinstance(entry, dict) else None
        if subscription:
            result.append(subscription)
    return result


def normalize_subscriptions(entries: Optional[List[Dict[str, Any]]]) -> NormalizedSubscriptions:
    """Split a customer's subscriptions into the live primary (or gift) and the addons."""
    normalized = NormalizedSubscriptions()
    for subscription in unwrap(entries):
        if subscription.get("status") == "cancelled":
            continue
        sub_type = SubscriptionMetadata.from_subscription(subscription).type
        if sub_type in PRIMARY_TYPES and normalized.primary is None:
            normalized.primary = subscription
        elif sub_type == "addon":
            normalized.addons.append(subscription)
    return normalized


def validate_subscription_type(subscription_type: Optional[str]) -> bool:
    return subscription_type in SUBSCRIPTION_TYPES


def end_of_term_for(subscription: Dict[str, Any]) -> bool:
    return subscription.get("status") != "future"


class SubscriptionRulesHelper:
    """Business checks that depend on configuration."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.tz = ZoneInfo(settings.REFERENCE_TIMEZONE)

    # ==================== Input checks ====================

    def validate_coupon_code(self, coupon_code: Optional[str]) -> bool:
        """Internal gift coupon and promo codes cannot be entered by subscribers."""
        code = (coupon_code or "").strip()
        if not code:
            return True
        if self.settings.GIFT_COUPON_ID and code == self.settings.GIFT_COUPON_ID:
            return False
        if self.settings.PROMO_COUPON_MARKER and self.settings.PROMO_COUPON_MARKER in code:
            return False
        return True

    @staticmethod
    def validate_address(customer: Dict[str, Any]) -> None:
        address = customer.get("defaultAddress") or {}
        missing = [name for name in REQUIRED_ADDRESS_FIELDS if not address.get(name)]
        if missing:
            raise ValidationError("Please enter a valid address/phone number.", {"missing": missing})

    def check_plan_country(self, plan_id: str, country_name: str) -> None:
        domestic = country_name == self.settings.DOMESTIC_COUNTRY_NAME
        if domestic and self.settings.INTERNATIONAL_PLAN_MARKER in plan_id:
            raise ValidationError(
                "You chose an international plan but have a domestic Shipping Address. "
                "Please change your plan."
            )
        if not domestic and self.settings.DOMESTIC_PLAN_MARKER in plan_id:
            raise ValidationError(
                "You chose a domestic plan but have an international Shipping Address. "
                "Please change your plan."
            )

    @staticmethod
    def find_duplicate(
        entries: List[Dict[str, Any]],
        subscription_type: str,
        track: str,
    ) -> Optional[Dict[str, Any]]:
        """
        Primary: any live primary. Addon: a future addon on the same track.
        """
        for subscription in unwrap(entries):
            metadata = SubscriptionMetadata.from_subscription(subscription)
            status = subscription.get("status")
            if subscription_type == "primary":
                if status in LIVE_PRIMARY_STATUSES and metadata.type == "primary":
                    return subscription
            elif (
                status == "future"
                and metadata.type == "addon"
                and metadata.product.track
                and track in metadata.product.track
            ):
                return subscription
        return None

    def select_addon_plan_id(self, addon_plans: Dict[str, Any], country_code: str) -> str:
        plans_by_type: Dict[str, str] = {}
        for item in addon_plans.get("list") or []:
            plan = item.get("plan") or {}
            plan_type = (plan.get("meta_data") or {}).get("plan_type")
            if plan_type and plan.get("id") and plan_type not in plans_by_type:
                plans_by_type[plan_type] = plan["id"]

        if "usa" not in plans_by_type or "international" not in plans_by_type:
            logging.error(f"Addon plans incomplete: found types {sorted(plans_by_type)}")
            raise IntegrityError("Addon plans not found.")

        if country_code == self.settings.DOMESTIC_COUNTRY_CODE:
            return plans_by_type["usa"]
        return plans_by_type["international"]

    # ==================== Dates ====================

    def local_now(self, now: datetime) -> datetime:
        return now.astimezone(self.tz)

    def first_day_of_next_month(self, now: datetime) -> int:
        """Epoch seconds of 00:00 on the 1st of next month in the reference timezone."""
        local = self.local_now(now)
        if local.month == 12:
            first = datetime(local.year + 1, 1, 1, tzinfo=self.tz)
        else:
            first = datetime(local.year, local.month + 1, 1, tzinfo=self.tz)
        return int(first.timestamp())

    def bridge_window(self, now: datetime):
        """
        [end of this month - N days, start of next month + M days) in the reference timezone.
        """
        start_of_next = datetime.fromtimestamp(self.first_day_of_next_month(now), tz=self.tz)
        end_of_month = start_of_next - timedelta(microseconds=1)
        window_start = end_of_month - timedelta(days=self.settings.BRIDGE_WINDOW_DAYS_BEFORE_MONTH_END)
        window_end = start_of_next + timedelta(days=self.settings.BRIDGE_WINDOW_DAYS_AFTER_MONTH_START)
        return window_start, window_end

    def compute_bridge_coupon(
        self,
        primary: Dict[str, Any],
        plan_period: int,
        now: datetime,
    ) -> Optional[str]:
        next_billing_at = primary.get("next_billing_at")
        if not next_billing_at:
            return None

        window_start, window_end = self.bridge_window(now)
        next_billing = datetime.fromtimestamp(int(next_billing_at), tz=self.tz)
        plan_id = primary.get("plan_id") or ""
        metadata = SubscriptionMetadata.from_subscription(primary)

        eligible = (
            window_start <= next_billing < window_end
            and plan_period > 1
            and primary.get("status") != "future"
            and metadata.type == "primary"
            and plan_id
            and not plan_id.endswith(self.settings.NEW_CUSTOMER_PLAN_MARKER)
        )
        if not eligible:
            return None
        if plan_period == 6:
            return self.settings.GIFT_BRIDGE_6_MONTHS
        return self.settings.GIFT_BRIDGE_12_MONTHS
