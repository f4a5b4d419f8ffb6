import json
import logging
from typing import Any, Dict

from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession

from club.errors import ValidationError
from club.services.feedback_service import FeedbackService
from club.services.subscription import SubscriptionBillingService, SubscriptionCoreService

routes = web.RouteTableDef()

GIFT_KEYS = ("customer_id", "gift_code", "gift_bundle", "gifter_customer_id", "gifter_order_id")
DISPLAY_KEYS = ("title", "vendor", "image", "handle")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


async def _payload(request: web.Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Request body must be valid JSON.") from e
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _ok(**body) -> web.Response:
    return web.json_response({"success": True, **body})


def _core(request: web.Request) -> SubscriptionCoreService:
    return request.app["subscription_core_service"]


def _billing(request: web.Request) -> SubscriptionBillingService:
    return request.app["subscription_billing_service"]


def _session(request: web.Request) -> AsyncSession:
    return request["session"]


@routes.get("/subscriptions")
async def get_subscriptions(request: web.Request) -> web.Response:
    result = await _billing(request).get_subscriptions(request.query.get("customer_id"))
    return web.json_response(result)


@routes.post("/subscriptions")
async def create_subscription(request: web.Request) -> web.Response:
    data = await _payload(request)
    result = await _core(request).create_subscription(
        _session(request),
        subscription_type=data.get("type"),
        track=data.get("track"),
        storefront_customer_id=data.get("sh_customer_id"),
        billing_customer_id=data.get("cb_customer_id"),
        product_id=data.get("product_id"),
        variant_id=data.get("variant_id"),
        plan_id=data.get("plan_id"),
        coupon_code=data.get("coupon_code"),
        selected_addons=data.get("selected_addons"),
        offer_active=_as_bool(data.get("isOfferActive")),
    )
    return _ok(**result)


@routes.post("/subscriptions/track")
async def update_subscription_track(request: web.Request) -> web.Response:
    data = await _payload(request)
    result = await _core(request).update_subscription_track(
        _session(request),
        billing_customer_id=data.get("cb_customer_id"),
        track=data.get("track"),
        previous_track=data.get("previous_track"),
        have_swapped=_as_bool(data.get("have_swapped")),
        variant_id=data.get("variant_id"),
    )
    return _ok(**result)


@routes.post("/subscriptions/term")
async def update_subscription_term(request: web.Request) -> web.Response:
    data = await _payload(request)
    result = await _core(request).update_subscription_term(
        billing_customer_id=data.get("cb_customer_id"),
        plan_id=data.get("cb_plan_id"),
    )
    return _ok(**result)


@routes.post("/subscriptions/cancel")
async def cancel_subscription(request: web.Request) -> web.Response:
    data = await _payload(request)
    result = await _core(request).cancel_subscription(
        _session(request),
        subscription_id=data.get("id"),
        subscription_type=data.get("type"),
    )
    return _ok(**result)


@routes.post("/subscriptions/cancel-all")
async def cancel_all_subscriptions(request: web.Request) -> web.Response:
    data = await _payload(request)
    addons = data.get("addons") or []
    if not isinstance(addons, list):
        raise ValidationError("addons must be a list.")
    result = await _core(request).cancel_all_subscriptions(
        _session(request),
        subscription_id=data.get("subscription_id"),
        storefront_customer_id=data.get("shopify_client_id"),
        billing_customer_id=data.get("chargebee_client_id"),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        email=data.get("email"),
        reason=data.get("reason"),
        comments=data.get("comments"),
        addons=addons,
    )
    return _ok(**result)


@routes.post("/subscriptions/reactivate")
async def reactivate_subscription(request: web.Request) -> web.Response:
    data = await _payload(request)
    result = await _core(request).reactivate_subscription(
        subscription_id=data.get("id"),
        subscription_type=data.get("type"),
        billing_customer_id=data.get("customer_id"),
    )
    return _ok(**result)


@routes.post("/subscriptions/swap")
async def swap_subscription_record(request: web.Request) -> web.Response:
    data = await _payload(request)
    credit_flag = data.get("is_swap_for_credit")
    result = await _core(request).swap_subscription_record(
        _session(request),
        subscription_id=data.get("subscription_id"),
        product_id=data.get("product_id"),
        variant_id=data.get("variant_id"),
        track=data.get("track"),
        subscription_type=data.get("type"),
        swapped_product_id=data.get("swapped_product_id"),
        is_credit_swap=None if credit_flag is None else _as_bool(credit_flag),
        gift={key: data.get(key) for key in GIFT_KEYS},
        display={key: data.get(key) for key in DISPLAY_KEYS},
    )
    return _ok(**result)


@routes.get("/subscriptions/renewal-estimate")
async def get_renewal_estimate(request: web.Request) -> web.Response:
    estimate = await _billing(request).get_renewal_estimate(request.query.get("subscriptionId"))
    return _ok(estimateObj=estimate)


@routes.get("/subscriptions/invoice")
async def download_invoice(request: web.Request) -> web.Response:
    url = await _billing(request).download_invoice(request.query.get("subscriptionId"))
    return _ok(invoiceURL=url)


@routes.post("/swaps-feedback")
async def submit_swaps_feedback(request: web.Request) -> web.Response:
    data = await _payload(request)
    service: FeedbackService = request.app["feedback_service"]
    result = await service.submit_swaps_feedback(
        _session(request),
        email=data.get("email"),
        rating=data.get("rating"),
        text=data.get("text"),
    )
    if result.get("already_added"):
        logging.debug(f"Duplicate swaps feedback submission for {data.get('email')}")
    return _ok(**result)
