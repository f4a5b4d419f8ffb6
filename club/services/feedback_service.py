import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings
from club.errors import ClubError, IntegrityError, ValidationError
from club.services.billing_client import BillingEngine
from club.services.dispatcher import JobKind, PendingEffects, SideEffectDispatcher
from club.services.storefront_client import Storefront
from club.services.swap_window import Clock, utc_now
from club.utils.deadlines import call_external
from club.utils.transaction_context import TransactionContext
from db.dal import feedback_dal


def _next_month(now: datetime) -> datetime:
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1)
    return now.replace(month=now.month + 1, day=1)


class FeedbackService:
    """Monthly swaps feedback: one entry per e-mail for the upcoming month."""

    def __init__(
        self,
        settings: Settings,
        billing: BillingEngine,
        storefront: Storefront,
        dispatcher: SideEffectDispatcher,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.billing = billing
        self.storefront = storefront
        self.dispatcher = dispatcher
        self.clock = clock

    async def submit_swaps_feedback(
        self,
        session: AsyncSession,
        *,
        email: Optional[str],
        rating: Optional[str],
        text: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not email or not rating:
            raise ValidationError("Missing params on swap feedback submission.")

        email = email.lower().strip()
        period = _next_month(self.clock())
        month, year, month_name = period.strftime("%m"), period.strftime("%Y"), period.strftime("%B")

        existing = await feedback_dal.get_feedback_for_period(session, email, month, year)
        if existing:
            logging.info(f"Swaps feedback for {email} ({month}/{year}) already recorded")
            return {"already_added": True}

        storefront_customer = await call_external(
            self.storefront.fetch_customer_by_email(email),
            "Storefront fetch_customer_by_email",
            self.settings.STOREFRONT_TIMEOUT_SECONDS,
        ) or {}
        billing_entry = await call_external(
            self.billing.get_customer_by_email(email),
            "Billing get_customer_by_email",
            self.settings.BILLING_TIMEOUT_SECONDS,
        ) or {}
        billing_customer = billing_entry.get("customer") or {}

        fields = {
            "email": email,
            "first_name": storefront_customer.get("first_name"),
            "last_name": storefront_customer.get("last_name"),
            "storefront_customer_id": storefront_customer.get("id"),
            "billing_customer_id": billing_customer.get("id"),
            "rating": 1 if rating == "positive" else 0,
            "text": text,
            "month": month,
            "month_name": month_name,
            "year": year,
        }

        effects = PendingEffects()
        async with TransactionContext(session, effects=effects):
            feedback = await feedback_dal.create_feedback(session, fields)
            if not feedback.id:
                raise IntegrityError(f"Swaps Feedback record was not created for {email}.")

            try:
                metafield = await call_external(
                    self.storefront.create_metafield({
                        "namespace": "swaps",
                        "key": "feedback",
                        "type": "single_line_text_field",
                        "value": f"{month}_{year}",
                        "owner_resource": "customer",
                        "owner_id": fields["storefront_customer_id"],
                    }),
                    "Storefront create_metafield",
                    self.settings.STOREFRONT_TIMEOUT_SECONDS,
                )
            except ClubError:
                logging.error(f"Metafield for swaps feedback of {email} failed, feedback rolled back")
                raise
            if not (metafield or {}).get("id"):
                raise IntegrityError(f"Metafield could not be created for {email}.")

            effects.enqueue(JobKind.SWAPS_FEEDBACK, {"swapFeedback": dict(fields)})

        await self.dispatcher.dispatch(effects)
        return {"already_added": False}
