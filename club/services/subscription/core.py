"""
Subscription Core Service

Оркестратор жизненного цикла подписок. Каждая операция - сага:

    validate -> (условная) мутация леджера -> вызов биллинга
             -> commit/rollback -> dispatch побочных эффектов

Проверки входных данных выполняются до открытия транзакции леджера.
Побочные эффекты (задачи очереди, уведомления дашборда, тег участника)
только собираются в PendingEffects во время фазы 1 и отдаются диспетчеру
после подтвержденного commit.

Активный цикл читается один раз на сагу (CycleSnapshot) и передается явно.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings
from club.errors import ClubError, IntegrityError, NotFoundError, OutOfStockError, ValidationError
from club.services.billing_client import BillingEngine
from club.services.dispatcher import JobKind, PendingEffects, SideEffectDispatcher
from club.services.inventory_ledger import InventoryLedger, LedgerDelta
from club.services.storefront_client import Storefront
from club.services.subscription.helpers import (
    SubscriptionRulesHelper,
    end_of_term_for,
    normalize_subscriptions,
    validate_subscription_type,
)
from club.services.subscription.metadata import GiftDetails, ProductSelection, SubscriptionMetadata
from club.services.swap_window import Clock, CycleSnapshot, load_cycle_snapshot, utc_now
from club.services.track_resolver import TrackResolver
from club.utils.deadlines import call_external
from club.utils.transaction_context import TransactionContext

ANALYTICS_PRIORITY = 5
CANCELLATIONS_EVENT = "refresh-cancellations"


def _parse_variant_id(raw_id: Any) -> Optional[int]:
    """Storefront ids may come as GIDs (``gid://shop/ProductVariant/123``)."""
    if raw_id in (None, ""):
        return None
    try:
        return int(str(raw_id).rsplit("/", 1)[-1])
    except ValueError:
        return None


def _parse_ids(message: str, **values: Any) -> Dict[str, Optional[int]]:
    """Numeric ids from request input; empty values stay None."""
    parsed: Dict[str, Optional[int]] = {}
    invalid = []
    for name, value in values.items():
        if value in (None, ""):
            parsed[name] = None
            continue
        if isinstance(value, bool):
            invalid.append(name)
            continue
        try:
            parsed[name] = int(value)
        except (TypeError, ValueError):
            invalid.append(name)
    if invalid:
        raise ValidationError(message, {"invalid": invalid})
    return parsed


def _require(params: Dict[str, Any], message: str) -> None:
    missing = [name for name, value in params.items() if value in (None, "", [])]
    if missing:
        raise ValidationError(message, {"missing": missing})


class SubscriptionCoreService:
    """
    Core service for subscription lifecycle sagas.

    Handles:
    - Subscription creation (primary with optional addons, standalone addon)
    - Track changes
    - Term changes
    - Cancellation (single addon, all subscriptions)
    - Reactivation
    - Record swaps
    """

    def __init__(
        self,
        settings: Settings,
        billing: BillingEngine,
        storefront: Storefront,
        ledger: InventoryLedger,
        track_resolver: TrackResolver,
        dispatcher: SideEffectDispatcher,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.billing = billing
        self.storefront = storefront
        self.ledger = ledger
        self.track_resolver = track_resolver
        self.dispatcher = dispatcher
        self.clock = clock
        self.rules = SubscriptionRulesHelper(settings)

        logging.info("SubscriptionCoreService initialized")

    # ==================== Plumbing ====================

    async def _billing(self, awaitable, what: str):
        return await call_external(awaitable, f"Billing {what}", self.settings.BILLING_TIMEOUT_SECONDS)

    async def _storefront(self, awaitable, what: str):
        return await call_external(awaitable, f"Storefront {what}", self.settings.STOREFRONT_TIMEOUT_SECONDS)

    async def _snapshot(self, session: AsyncSession) -> CycleSnapshot:
        return await call_external(
            load_cycle_snapshot(session, self.clock),
            "Active cycle lookup",
            self.settings.DB_STATEMENT_TIMEOUT_SECONDS,
        )

    @staticmethod
    def _require_cycle(snapshot: CycleSnapshot) -> int:
        if snapshot.cycle_id is None:
            raise NotFoundError("No active rotation cycle.")
        return snapshot.cycle_id

    @staticmethod
    def _subscription_or_fail(response: Optional[Dict[str, Any]], what: str, ref: Any) -> Dict[str, Any]:
        subscription = (response or {}).get("subscription")
        if not subscription or not subscription.get("id"):
            raise IntegrityError(f"Subscription was not {what} (ref: {ref}).")
        return subscription

    def _collect_inventory_jobs(self, effects: PendingEffects, deltas: List[LedgerDelta]) -> None:
        """One inventory-adjustment job per ledger delta."""
        for delta in deltas:
            if delta.variant_ref:
                effects.enqueue(
                    JobKind.ADJUST_VARIANT_INVENTORY,
                    {"variantId": delta.variant_ref, "availableAdjustment": delta.adjustment},
                )
            else:
                effects.after_commit(
                    f"variant lookup {delta.product_id}/{delta.pool}",
                    self._enqueue_adjustment_by_title,
                    delta,
                )

    async def _enqueue_adjustment_by_title(self, delta: LedgerDelta) -> None:
        """Fallback for ledger rows provisioned without variant refs."""
        try:
            variants = await self._storefront(self.storefront.fetch_variants(delta.product_id), "fetch_variants")
        except ClubError as e:
            logging.warning(f"Inventory job for product {delta.product_id} ({delta.pool}) skipped: {e.message}")
            return

        variant = next((v for v in variants or [] if v.get("title") == delta.pool), None)
        variant_id = _parse_variant_id(variant.get("id")) if variant else None
        if variant_id is None:
            logging.warning(
                f"Inventory job for product {delta.product_id} skipped: no '{delta.pool}' variant in storefront"
            )
            return
        delivered = await self.dispatcher.enqueue_job(
            JobKind.ADJUST_VARIANT_INVENTORY,
            {"variantId": variant_id, "availableAdjustment": delta.adjustment},
        )
        if not delivered:
            raise RuntimeError(f"Inventory job for variant {variant_id} was not enqueued")

    # ==================== CreateSubscription ====================

    async def create_subscription(
        self,
        session: AsyncSession,
        *,
        subscription_type: Optional[str],
        track: Optional[str],
        storefront_customer_id: Optional[str],
        billing_customer_id: Optional[str],
        product_id: Optional[int],
        variant_id: Optional[int],
        plan_id: Optional[str] = None,
        coupon_code: Optional[str] = None,
        selected_addons: Optional[List[str]] = None,
        offer_active: bool = False,
    ) -> Dict[str, Any]:
        _require(
            {
                "sh_customer_id": storefront_customer_id,
                "cb_customer_id": billing_customer_id,
                "product_id": product_id,
                "variant_id": variant_id,
                "track": track,
            },
            "Missing params on create customer subscription.",
        )
        if not validate_subscription_type(subscription_type):
            raise ValidationError("Invalid subscription type on create customer subscription.")
        ids = _parse_ids(
            "Invalid product on create customer subscription.", product_id=product_id, variant_id=variant_id
        )
        product_id, variant_id = ids["product_id"], ids["variant_id"]
        is_primary = subscription_type == "primary"
        if is_primary and not plan_id:
            raise ValidationError("Missing plan on create customer subscription.")

        resolved = await self.track_resolver.resolve(session, track)

        if not self.rules.validate_coupon_code(coupon_code):
            raise ValidationError("Sorry we couldn't find this discount code.")

        customer = await self._storefront(
            self.storefront.fetch_customer_by_id(storefront_customer_id), "fetch_customer_by_id"
        )
        if not customer:
            raise ValidationError("Please sign up or login with your account.")
        self.rules.validate_address(customer)
        address = customer.get("defaultAddress") or {}

        existing = await self._billing(self.billing.list_subscriptions(billing_customer_id), "list_subscriptions")
        if self.rules.find_duplicate(existing, subscription_type, resolved.value):
            if is_primary:
                raise ValidationError("Subscription already added.")
            raise ValidationError("This Add-On Track is already added.")

        if is_primary:
            self.rules.check_plan_country(plan_id, address.get("country") or "")

        addon_plans = await self._billing(self.billing.list_addon_plans(), "list_addon_plans")
        addon_plan_id = self.rules.select_addon_plan_id(addon_plans, address.get("country_code") or "")

        snapshot = await self._snapshot(session)
        start_date = self.rules.first_day_of_next_month(self.clock())

        metadata = SubscriptionMetadata(
            type=subscription_type,
            new=False,
            swap_window=snapshot.metadata_value(),
            product=ProductSelection(id=product_id, variant_id=variant_id, track=resolved.value),
        )
        if is_primary and not snapshot.is_default_offering(product_id):
            # Subscriber picked a record outside the cycle's offerings
            metadata.swx = True
            metadata.product.swapped = True

        params: Dict[str, Any] = {
            "plan_id": plan_id if is_primary else addon_plan_id,
            "meta_data": metadata.to_billing(),
        }
        if coupon_code and coupon_code.strip():
            params["coupon_ids"] = [coupon_code.strip()]
        if not is_primary or snapshot.is_open:
            params["start_date"] = start_date

        addon_requests = []
        if is_primary and selected_addons:
            addon_requests = self._build_addon_requests(
                selected_addons, snapshot, addon_plan_id, start_date, offer_active
            )
            for addon in addon_requests:
                product = addon["meta_data"]["product"]
                available = await self._storefront(
                    self.storefront.is_variant_available(product["variant_id"]), "is_variant_available"
                )
                if not available:
                    raise OutOfStockError(f"Sorry, {product['track']} record is no longer available.")

        reserve = not is_primary or snapshot.is_open
        effects = PendingEffects()
        addon_ids: List[str] = []

        async with TransactionContext(session, effects=effects):
            deltas: List[LedgerDelta] = []
            if reserve:
                cycle_id = self._require_cycle(snapshot)
                deltas = await self.ledger.reserve_new_sub(session, cycle_id, product_id)

            for addon in addon_requests:
                response = await self._billing(
                    self.billing.create_subscription(billing_customer_id, addon), "create_subscription"
                )
                addon_subscription = self._subscription_or_fail(response, "created", billing_customer_id)
                addon_ids.append(addon_subscription["id"])
                if snapshot.is_open:
                    effects.enqueue(
                        JobKind.SYNC_SWAP_ANALYSIS,
                        {
                            "track": addon["meta_data"]["product"]["track"],
                            "newAddon": True,
                            "subscription_id": addon_subscription["id"],
                        },
                        priority=ANALYTICS_PRIORITY,
                    )

            response = await self._billing(
                self.billing.create_subscription(billing_customer_id, params), "create_subscription"
            )
            subscription = self._subscription_or_fail(response, "created", billing_customer_id)

            if snapshot.is_open:
                effects.enqueue(
                    JobKind.SYNC_SWAP_ANALYSIS,
                    {
                        "track": resolved.value,
                        "newPrimary": is_primary,
                        "newAddon": not is_primary,
                        "subscription_id": subscription["id"],
                    },
                    priority=ANALYTICS_PRIORITY,
                )
            self._collect_inventory_jobs(effects, deltas)
            if is_primary:
                effects.after_commit(
                    "membership tag",
                    self.storefront.add_customer_tag,
                    customer,
                    self.settings.MEMBERSHIP_TAG,
                )

        await self.dispatcher.dispatch(effects)
        logging.info(
            f"Created {subscription_type} subscription {subscription['id']} for customer {billing_customer_id} "
            f"(track={resolved.value}, addons={len(addon_ids)}, window={snapshot.metadata_value()})"
        )
        return {"subscription_id": subscription["id"], "addon_subscription_ids": addon_ids}

    def _build_addon_requests(
        self,
        selected_addons: List[str],
        snapshot: CycleSnapshot,
        addon_plan_id: str,
        start_date: int,
        offer_active: bool,
    ) -> List[Dict[str, Any]]:
        requests = []
        for addon_track in selected_addons:
            normalized = self.track_resolver.normalize(addon_track)
            offering = snapshot.offering_for_track(normalized)
            if offering is None:
                logging.warning(f"Addon track '{addon_track}' has no offering in the active cycle, skipped")
                continue
            if not offering.newsub_variant_ref:
                raise IntegrityError("Missing track or variant_id on addon subscription.", {"track": normalized})

            addon_metadata = SubscriptionMetadata(
                type="addon",
                new=False,
                swap_window=snapshot.metadata_value(),
                product=ProductSelection(
                    id=offering.product_id,
                    variant_id=offering.newsub_variant_ref,
                    track=normalized,
                ),
            )
            request: Dict[str, Any] = {"plan_id": addon_plan_id, "meta_data": addon_metadata.to_billing()}
            if snapshot.is_open:
                request["start_date"] = start_date
            if offer_active and self.settings.CHECKOUT_OFFER_REGULAR:
                request["coupon_ids"] = [self.settings.CHECKOUT_OFFER_REGULAR]
            requests.append(request)
        return requests

    # ==================== UpdateSubscriptionTrack ====================

    async def update_subscription_track(
        self,
        session: AsyncSession,
        *,
        billing_customer_id: Optional[str],
        track: Optional[str],
        previous_track: Optional[str] = None,
        have_swapped: bool = False,
        variant_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        _require(
            {"cb_customer_id": billing_customer_id, "track": track},
            "Missing params on update subscription track.",
        )
        variant_id = _parse_ids("Invalid variant on update subscription track.", variant_id=variant_id)["variant_id"]
        resolved = await self.track_resolver.resolve(session, track)

        entries = await self._billing(self.billing.list_subscriptions(billing_customer_id), "list_subscriptions")
        if not entries:
            raise NotFoundError("No subscriptions were found on update subscription track.")
        primary = normalize_subscriptions(entries).primary
        if primary is None:
            raise NotFoundError("No primary/gift subscription was found on update subscription track.")

        metadata = SubscriptionMetadata.from_subscription(primary)
        if not metadata.product.track:
            raise NotFoundError(
                "No meta data track was found on update subscription track.",
                {"subscription_id": primary["id"], "customer_id": billing_customer_id},
            )
        metadata.product.track = resolved.value

        snapshot = await self._snapshot(session)
        effects = PendingEffects()

        async with TransactionContext(session, effects=effects):
            deltas: List[LedgerDelta] = []
            if snapshot.is_open:
                cycle_id = self._require_cycle(snapshot)
                if variant_id:
                    target = await self.ledger.find_row_by_swap_variant(session, cycle_id, variant_id)
                else:
                    target = await self.ledger.find_track_offering(session, cycle_id, resolved.id)
                if target is None or not self.ledger.has_swap_stock(target):
                    raise OutOfStockError("Variant is not available on update subscription track.")

                if not have_swapped:
                    deltas.extend(await self._release_previous_track(session, cycle_id, previous_track))
                deltas.extend(await self.ledger.reserve_swap(session, cycle_id, target.product_id))

            response = await self._billing(
                self.billing.update_subscription(primary["id"], {"meta_data": metadata.to_billing()}),
                "update_subscription",
            )
            self._subscription_or_fail(response, "updated", primary["id"])
            self._collect_inventory_jobs(effects, deltas)

        await self.dispatcher.dispatch(effects)
        logging.info(
            f"Track of subscription {primary['id']} set to '{resolved.value}' "
            f"(window={snapshot.metadata_value()}, ledger_deltas={len(deltas)})"
        )
        return {"subscription_id": primary["id"], "track": resolved.value}

    async def _release_previous_track(
        self, session: AsyncSession, cycle_id: int, previous_track: Optional[str]
    ) -> List[LedgerDelta]:
        previous = await self.track_resolver.lookup(session, previous_track)
        if previous is None:
            logging.info(f"Previous track '{previous_track}' not found, nothing released")
            return []
        row = await self.ledger.find_track_offering(session, cycle_id, previous.id)
        if row is None:
            logging.info(f"Previous track '{previous.value}' has no offering in cycle {cycle_id}")
            return []
        return await self.ledger.release_swap(session, cycle_id, row.product_id)

    # ==================== UpdateSubscriptionTerm ====================

    async def update_subscription_term(
        self,
        *,
        billing_customer_id: Optional[str],
        plan_id: Optional[str],
    ) -> Dict[str, Any]:
        _require(
            {"cb_customer_id": billing_customer_id, "cb_plan_id": plan_id},
            "Missing params on update subscription term.",
        )
        plan = await self._billing(self.billing.get_plan(plan_id), "get_plan")
        period = (plan or {}).get("period")
        if not period:
            raise NotFoundError(f"Plan period wasn't found on update subscription term ({plan_id}).")

        entries = await self._billing(self.billing.list_subscriptions(billing_customer_id), "list_subscriptions")
        if not entries:
            raise NotFoundError("No subscriptions were found on update subscription term.")
        primary = normalize_subscriptions(entries).primary
        if primary is None:
            raise NotFoundError("No primary/gift subscription was found on update subscription term.")

        coupon_id = self.rules.compute_bridge_coupon(primary, int(period), self.clock())
        params = {
            "plan_id": plan_id,
            "end_of_term": end_of_term_for(primary),
            "coupon_ids": [coupon_id] if coupon_id else [],
        }
        response = await self._billing(self.billing.update_subscription(primary["id"], params), "update_subscription")
        self._subscription_or_fail(response, "updated", primary["id"])

        logging.info(f"Term of subscription {primary['id']} changed to plan {plan_id} (bridge coupon: {coupon_id})")
        return {"subscription_id": primary["id"], "coupon_id": coupon_id}

    # ==================== Cancellation ====================

    async def _release_cancelled(
        self,
        session: AsyncSession,
        snapshot: CycleSnapshot,
        subscription: Dict[str, Any],
        subscription_type: str,
        effects: PendingEffects,
    ) -> List[LedgerDelta]:
        """CancelledInventoryRelease for one cancelled subscription; no-op outside the swap window."""
        product = SubscriptionMetadata.from_subscription(subscription).product
        if not product.id or not snapshot.is_open:
            return []
        deltas = await self.ledger.release_cancelled(
            session, self._require_cycle(snapshot), product.id, product.swapped
        )
        self._collect_inventory_jobs(effects, deltas)
        effects.publish(
            self.settings.DASHBOARD_CHANNEL,
            CANCELLATIONS_EVENT,
            {"track": product.track, "type": subscription_type},
        )
        return deltas

    async def _cancel_in_billing(self, subscription_id: str, end_of_term: bool) -> Dict[str, Any]:
        response = await self._billing(
            self.billing.cancel_subscription(subscription_id, end_of_term), "cancel_subscription"
        )
        return self._subscription_or_fail(response, "cancelled", subscription_id)

    async def cancel_subscription(
        self,
        session: AsyncSession,
        *,
        subscription_id: Optional[str],
        subscription_type: Optional[str],
    ) -> Dict[str, Any]:
        _require({"id": subscription_id}, "Missing params on remove customer subscription.")
        if subscription_type != "addon":
            raise ValidationError("Invalid subscription type on remove customer subscription.")

        existing = await self._billing(self.billing.get_subscription(subscription_id), "get_subscription")
        if not existing or not existing.get("subscription"):
            raise NotFoundError("Subscription not found on remove customer subscription.")

        cancelled = await self._cancel_in_billing(subscription_id, end_of_term_for(existing["subscription"]))

        snapshot = await self._snapshot(session)
        effects = PendingEffects()
        async with TransactionContext(session, effects=effects):
            deltas = await self._release_cancelled(session, snapshot, cancelled, "addon", effects)

        await self.dispatcher.dispatch(effects)
        logging.info(f"Cancelled addon subscription {subscription_id} (ledger_deltas={len(deltas)})")
        return {"subscription_id": subscription_id}

    async def cancel_all_subscriptions(
        self,
        session: AsyncSession,
        *,
        subscription_id: Optional[str],
        storefront_customer_id: Optional[str] = None,
        billing_customer_id: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        reason: Optional[str] = None,
        comments: Optional[str] = None,
        addons: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Cancel the primary and every listed addon.

        The cancellation survey job goes out once the primary is cancelled in
        billing, whether or not the ledger transaction commits.
        """
        _require({"subscription_id": subscription_id}, "Missing params on cancel all customer subscriptions.")

        existing = await self._billing(self.billing.get_subscription(subscription_id), "get_subscription")
        if not existing or not existing.get("subscription"):
            raise NotFoundError("Subscription not found on cancel all customer subscriptions.")
        status_end_of_term = end_of_term_for(existing["subscription"])

        snapshot = await self._snapshot(session)
        effects = PendingEffects()
        survey_payload = {
            "subscription_id": subscription_id,
            "shopify_client_id": storefront_customer_id,
            "chargebee_client_id": billing_customer_id,
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "reason": reason,
            "comments": comments,
        }
        primary_cancelled = False
        cancelled_addons: List[str] = []

        try:
            async with TransactionContext(session, effects=effects):
                primary = await self._cancel_in_billing(subscription_id, status_end_of_term)
                primary_cancelled = True
                await self._release_cancelled(session, snapshot, primary, "primary", effects)

                for addon in addons or []:
                    addon_id = addon.get("id")
                    if not addon_id:
                        continue
                    addon_subscription = await self._cancel_in_billing(addon_id, end_of_term_for(addon))
                    cancelled_addons.append(addon_id)
                    await self._release_cancelled(session, snapshot, addon_subscription, "addon", effects)
        except Exception:
            if primary_cancelled:
                logging.error(
                    f"Cancel-all for {subscription_id} failed after billing cancellation, "
                    f"ledger rolled back (addons cancelled: {cancelled_addons})"
                )
                await self._dispatch_survey(survey_payload)
            raise

        await self.dispatcher.dispatch(effects)
        await self._dispatch_survey(survey_payload)
        logging.info(f"Cancelled subscription {subscription_id} with {len(cancelled_addons)} addon(s)")
        return {"subscription_id": subscription_id, "cancelled_addons": cancelled_addons}

    async def _dispatch_survey(self, payload: Dict[str, Any]) -> None:
        survey = PendingEffects()
        survey.enqueue(JobKind.SUBMIT_CANCELLATION_QUIZ, payload, priority=ANALYTICS_PRIORITY)
        survey.seal()
        await self.dispatcher.dispatch(survey)

    # ==================== ReactivateSubscription ====================

    async def reactivate_subscription(
        self,
        *,
        subscription_id: Optional[str],
        subscription_type: Optional[str],
        billing_customer_id: Optional[str],
    ) -> Dict[str, Any]:
        _require(
            {"id": subscription_id, "type": subscription_type, "customer_id": billing_customer_id},
            "Missing params on reactivate customer subscription.",
        )
        if not validate_subscription_type(subscription_type):
            raise ValidationError("Invalid subscription type on reactivate customer subscription.")

        await self._billing(
            self.billing.reactivate_subscription(subscription_id, subscription_type, billing_customer_id),
            "reactivate_subscription",
        )

        if subscription_type == "primary":
            effects = PendingEffects()
            effects.enqueue(
                JobKind.DEACTIVATE_CANCELLATION_QUIZ,
                {"subscription_id": subscription_id, "chargebee_client_id": billing_customer_id},
                priority=ANALYTICS_PRIORITY,
            )
            # Billing confirmed the reactivation; there is no local transaction
            effects.seal()
            await self.dispatcher.dispatch(effects)

        logging.info(f"Reactivated {subscription_type} subscription {subscription_id}")
        return {"subscription_id": subscription_id}

    # ==================== SwapSubscriptionRecord ====================

    async def swap_subscription_record(
        self,
        session: AsyncSession,
        *,
        subscription_id: Optional[str],
        product_id: Optional[int],
        variant_id: Optional[int],
        track: Optional[str],
        subscription_type: Optional[str],
        swapped_product_id: Optional[int] = None,
        is_credit_swap: Optional[bool] = None,
        gift: Optional[Dict[str, Any]] = None,
        display: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Swap the subscriber's record for another one from the swap pool.

        The ledger is committed before the billing metadata update. If that
        update fails the inventory stays adjusted; the deltas are logged at
        CRITICAL for manual reconciliation.
        """
        _require(
            {
                "subscription_id": subscription_id,
                "product_id": product_id,
                "variant_id": variant_id,
                "track": track,
                "type": subscription_type,
            },
            "Missing params on swap subscription record.",
        )
        ids = _parse_ids(
            "Invalid product on swap subscription record.",
            product_id=product_id,
            variant_id=variant_id,
            swapped_product_id=swapped_product_id,
        )
        product_id, variant_id, swapped_product_id = ids["product_id"], ids["variant_id"], ids["swapped_product_id"]
        if is_credit_swap is None:
            credit_product = self.settings.SWAP_FOR_CREDIT_PRODUCT_ID
            is_credit_swap = credit_product is not None and product_id == int(credit_product)
        if not is_credit_swap and not swapped_product_id:
            raise ValidationError("Missing params on swap subscription record.", {"missing": ["swapped_product_id"]})

        normalized_track = self.track_resolver.normalize(track)
        deltas: List[LedgerDelta] = []

        if not is_credit_swap:
            async with TransactionContext(session) as tx:
                target = await self.ledger.find_available_swap_row(session, product_id)
                deltas.extend(await self.ledger.convert_to_swap(session, target.cycle_id, swapped_product_id))
                deltas.extend(await self.ledger.reserve_swap(session, target.cycle_id, product_id))
                await tx.commit()

        metadata = SubscriptionMetadata(
            type=subscription_type,
            new=False,
            product=ProductSelection(
                id=product_id,
                variant_id=variant_id,
                track=normalized_track,
                swapped=True,
                swapped_date=int(self.clock().timestamp()),
            ),
        )
        gift_details = GiftDetails(**{k: str(v) for k, v in (gift or {}).items() if v not in (None, "")})
        if not gift_details.is_empty():
            metadata.gift = gift_details

        try:
            response = await self._billing(
                self.billing.update_subscription(subscription_id, {"meta_data": metadata.to_billing()}),
                "update_subscription",
            )
            subscription = self._subscription_or_fail(response, "updated", subscription_id)
        except ClubError:
            if deltas:
                logging.critical(
                    f"Swap for subscription {subscription_id} committed inventory but billing metadata "
                    f"was not updated. Reconcile manually: deltas={deltas}"
                )
            raise

        customer = response.get("customer") or {}
        effects = PendingEffects()
        effects.enqueue(
            JobKind.SYNC_SWAP_ANALYSIS,
            {
                "track": track,
                "subscription_id": subscription["id"],
                "swappedProductId": swapped_product_id,
                "swapProductId": product_id,
                "isSwapForCredit": is_credit_swap,
            },
            priority=ANALYTICS_PRIORITY,
        )
        if not is_credit_swap:
            effects.enqueue(
                JobKind.ADJUST_INVENTORY_AFTER_SWAP,
                {"swappedProductId": swapped_product_id, "swapProductId": product_id, "swapVariantId": variant_id},
                priority=ANALYTICS_PRIORITY,
            )
        if customer.get("email"):
            display = display or {}
            effects.enqueue(
                JobKind.SEND_SWAP_CONFIRMATION_EMAIL,
                {
                    "first_name": customer.get("first_name", ""),
                    "last_name": customer.get("last_name", ""),
                    "email": customer["email"],
                    "product_id": product_id,
                    "variant_id": variant_id,
                    "track": track,
                    "title": display.get("title"),
                    "vendor": display.get("vendor"),
                    "image": display.get("image"),
                    "handle": display.get("handle"),
                    "is_swap_for_credit": is_credit_swap,
                },
                priority=ANALYTICS_PRIORITY,
            )
        effects.seal()
        await self.dispatcher.dispatch(effects)

        logging.info(
            f"Swapped subscription {subscription_id} to product {product_id} "
            f"(from {swapped_product_id}, credit={is_credit_swap})"
        )
        return {"subscription_id": subscription["id"], "is_swap_for_credit": is_credit_swap}
