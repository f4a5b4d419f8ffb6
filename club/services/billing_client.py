"""
Billing engine integration.

The billing engine owns subscription records; this service only reads them
and requests mutations. Responses are returned as the engine's JSON
(``{"subscription": {...}, "customer": {...}}``); subscription metadata is
validated at this boundary by ``SubscriptionMetadata``.
"""

from typing import Any, Dict, List, Optional, Protocol

import aiohttp

from config.settings import Settings
from club.errors import NotFoundError
from club.services.http_client import JsonApiClient


class BillingEngine(Protocol):
    """Operations the sagas need from the billing engine."""

    async def list_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        ...

    async def get_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def get_subscription_with_scheduled_changes(self, subscription_id: str) -> Dict[str, Any]:
        ...

    async def create_subscription(self, customer_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def update_subscription(self, subscription_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def cancel_subscription(self, subscription_id: str, end_of_term: bool) -> Dict[str, Any]:
        ...

    async def reactivate_subscription(
        self, subscription_id: str, subscription_type: str, customer_id: str
    ) -> Dict[str, Any]:
        ...

    async def get_plan(self, plan_id: str) -> Dict[str, Any]:
        ...

    async def get_renewal_estimate(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def get_latest_invoice(self, subscription_id: str) -> Dict[str, Any]:
        ...

    async def get_invoice_download_url(self, invoice_id: str) -> str:
        ...

    async def list_addon_plans(self) -> Dict[str, Any]:
        ...

    async def get_customer_by_email(self, email: str) -> Dict[str, Any]:
        ...


class HttpBillingEngine(JsonApiClient):
    service_name = "Billing engine"

    def __init__(self, settings: Settings):
        super().__init__(
            base_url=settings.BILLING_API_URL,
            timeout=settings.BILLING_TIMEOUT_SECONDS,
            auth=aiohttp.BasicAuth(settings.BILLING_API_KEY or "", ""),
        )

    async def list_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        response = await self.request(
            "GET", "subscriptions", params={"customer_id[is]": customer_id, "limit": 100}
        )
        return response.get("list", [])

    async def get_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.request("GET", f"subscriptions/{subscription_id}")
        except NotFoundError:
            return None

    async def get_subscription_with_scheduled_changes(self, subscription_id: str) -> Dict[str, Any]:
        return await self.request("GET", f"subscriptions/{subscription_id}/retrieve_with_scheduled_changes")

    async def create_subscription(self, customer_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", f"customers/{customer_id}/subscriptions", json_data=params)

    async def update_subscription(self, subscription_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", f"subscriptions/{subscription_id}", json_data=params)

    async def cancel_subscription(self, subscription_id: str, end_of_term: bool) -> Dict[str, Any]:
        return await self.request(
            "POST", f"subscriptions/{subscription_id}/cancel", json_data={"end_of_term": end_of_term}
        )

    async def reactivate_subscription(
        self, subscription_id: str, subscription_type: str, customer_id: str
    ) -> Dict[str, Any]:
        return await self.request(
            "POST",
            f"subscriptions/{subscription_id}/reactivate",
            json_data={"type": subscription_type, "customer_id": customer_id},
        )

    async def get_plan(self, plan_id: str) -> Dict[str, Any]:
        response = await self.request("GET", f"plans/{plan_id}")
        return response.get("plan", {})

    async def get_renewal_estimate(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        response = await self.request("GET", f"subscriptions/{subscription_id}/renewal_estimate")
        return response.get("estimate")

    async def get_latest_invoice(self, subscription_id: str) -> Dict[str, Any]:
        return await self.request(
            "GET",
            "invoices",
            params={"subscription_id[is]": subscription_id, "limit": 1, "sort_by[desc]": "date"},
        )

    async def get_invoice_download_url(self, invoice_id: str) -> str:
        response = await self.request("POST", f"invoices/{invoice_id}/pdf")
        return response.get("download", {}).get("download_url", "")

    async def list_addon_plans(self) -> Dict[str, Any]:
        return await self.request("GET", "plans", params={"meta_data[addon]": "true", "status[is]": "active"})

    async def get_customer_by_email(self, email: str) -> Dict[str, Any]:
        response = await self.request("GET", "customers", params={"email[is]": email, "limit": 1})
        items = response.get("list", [])
        return items[0] if items else {}
