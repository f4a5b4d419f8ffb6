"""
Subscription Billing Service

Read-only views over the billing engine: the customer's subscriptions,
renewal estimates and invoice downloads. No ledger interaction.
"""

import logging
from typing import Any, Dict, Optional

from config.settings import Settings
from club.errors import NotFoundError, ValidationError
from club.services.billing_client import BillingEngine
from club.services.subscription.helpers import normalize_subscriptions
from club.utils.deadlines import call_external

RENEWAL_OFFER_LABEL = "Renewal Offer"
MEMBERSHIP_CREDITS_LABEL = "Membership Credits"
PROMOTIONAL_CREDITS_MARKER = "Promotional Credits"


class SubscriptionBillingService:
    def __init__(self, settings: Settings, billing: BillingEngine):
        self.settings = settings
        self.billing = billing

    async def _call(self, awaitable, what: str):
        return await call_external(awaitable, f"Billing {what}", self.settings.BILLING_TIMEOUT_SECONDS)

    async def get_subscriptions(self, billing_customer_id: Optional[str]) -> Dict[str, Any]:
        if not billing_customer_id:
            raise ValidationError("Missing params on get subscriptions.")

        entries = await self._call(self.billing.list_subscriptions(billing_customer_id), "list_subscriptions")
        normalized = normalize_subscriptions(entries)
        result: Dict[str, Any] = {"cb_addons": normalized.addons}

        primary = normalized.primary
        if primary is None:
            return result
        result["cb_primary_subscription"] = primary

        if primary.get("has_scheduled_changes"):
            response = await self._call(
                self.billing.get_subscription_with_scheduled_changes(normalized.primary_id),
                "get_subscription_with_scheduled_changes",
            )
            changed = (response or {}).get("subscription") or {}
            if changed.get("plan_id") != normalized.primary_plan_id:
                result["cb_has_term_changes"] = True

            period = changed.get("billing_period")
            unit = changed.get("billing_period_unit")
            if period == 1 and unit == "year":
                period, unit = 12, "month"
            result["cb_subscription_with_changes"] = {"billing_period": period, "billing_period_unit": unit}

        if normalized.primary_status == "active":
            estimate = await self._call(
                self.billing.get_renewal_estimate(normalized.primary_id), "get_renewal_estimate"
            )
            if estimate:
                invoice_estimate = estimate.get("invoice_estimate") or {}
                result["cb_upcoming_estimate"] = {
                    "sub_total": invoice_estimate.get("sub_total"),
                    "total": invoice_estimate.get("total"),
                }
        return result

    async def get_renewal_estimate(self, subscription_id: Optional[str]) -> Dict[str, Any]:
        """
        Renewal estimate with customer-facing discount labels.

        Promo and promotional-credit discounts are relabelled and subtracted
        from the subtotal.
        """
        if not subscription_id:
            raise NotFoundError("Subscription not found.")

        estimate = await self._call(self.billing.get_renewal_estimate(subscription_id), "get_renewal_estimate")
        estimate = estimate or {}
        invoice_estimate = estimate.get("invoice_estimate") or {}
        discounts = invoice_estimate.get("discounts") or []
        subtotal = invoice_estimate.get("sub_total")
        subtotal_after_discounts = subtotal

        for discount in discounts:
            description = discount.get("description") or ""
            amount = discount.get("amount") or 0
            if self.settings.PROMO_COUPON_MARKER in description:
                subtotal_after_discounts = (subtotal_after_discounts or 0) - amount
                discount["description"] = RENEWAL_OFFER_LABEL
            elif PROMOTIONAL_CREDITS_MARKER in description:
                subtotal_after_discounts = (subtotal_after_discounts or 0) - amount
                discount["description"] = MEMBERSHIP_CREDITS_LABEL

        return {
            "subscriptionId": (estimate.get("subscription_estimate") or {}).get("id"),
            "subtotal": subtotal,
            "subtotalAfterDiscounts": subtotal_after_discounts,
            "discounts": discounts,
            "total": invoice_estimate.get("total"),
            "taxes": invoice_estimate.get("taxes"),
        }

    async def download_invoice(self, subscription_id: Optional[str]) -> str:
        if not subscription_id:
            raise NotFoundError("Subscription not found.")

        invoices = await self._call(self.billing.get_latest_invoice(subscription_id), "get_latest_invoice")
        items = (invoices or {}).get("list") or []
        invoice_id = ((items[0] if items else {}).get("invoice") or {}).get("id")
        if not invoice_id:
            logging.info(f"No invoice found for subscription {subscription_id}")
            return ""
        return await self._call(self.billing.get_invoice_download_url(invoice_id), "get_invoice_download_url")
