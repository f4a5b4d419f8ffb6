import logging
from typing import Any, Dict, List, Optional, Protocol

from config.settings import Settings
from club.errors import NotFoundError
from club.services.http_client import JsonApiClient


class Storefront(Protocol):
    """Catalog/storefront operations used by the sagas."""

    async def fetch_variants(self, product_id: int) -> List[Dict[str, Any]]:
        ...

    async def is_variant_available(self, variant_id: int) -> bool:
        ...

    async def fetch_customer_by_id(self, customer_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def fetch_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        ...

    async def create_metafield(self, metafield: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def add_customer_tag(self, customer: Dict[str, Any], tag: str) -> None:
        ...


class HttpStorefrontClient(JsonApiClient):
    service_name = "Storefront"

    def __init__(self, settings: Settings):
        super().__init__(
            base_url=settings.STOREFRONT_API_URL,
            timeout=settings.STOREFRONT_TIMEOUT_SECONDS,
            headers={"X-Shopify-Access-Token": settings.STOREFRONT_ACCESS_TOKEN or ""},
        )

    async def fetch_variants(self, product_id: int) -> List[Dict[str, Any]]:
        response = await self.request("GET", f"products/{product_id}/variants.json")
        return response.get("variants", [])

    async def is_variant_available(self, variant_id: int) -> bool:
        try:
            response = await self.request("GET", f"variants/{variant_id}.json")
        except NotFoundError:
            return False
        variant = response.get("variant") or {}
        if variant.get("inventory_policy") == "continue":
            return True
        return (variant.get("inventory_quantity") or 0) > 0

    async def fetch_customer_by_id(self, customer_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = await self.request("GET", f"customers/{customer_id}.json")
        except NotFoundError:
            return None
        customer = response.get("customer")
        if customer and "default_address" in customer:
            customer["defaultAddress"] = customer.get("default_address") or {}
        return customer

    async def fetch_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        response = await self.request("GET", "customers/search.json", params={"query": f"email:{email}"})
        customers = response.get("customers") or []
        return customers[0] if customers else None

    async def create_metafield(self, metafield: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.request("POST", "metafields.json", json_data={"metafield": metafield})
        return response.get("metafield", {})

    async def add_customer_tag(self, customer: Dict[str, Any], tag: str) -> None:
        tags = [t.strip() for t in (customer.get("tags") or "").split(",") if t.strip()]
        if tag in tags:
            logging.debug(f"Customer {customer.get('id')} already tagged '{tag}'")
            return
        tags.append(tag)
        await self.request(
            "PUT",
            f"customers/{customer['id']}.json",
            json_data={"customer": {"id": customer["id"], "tags": ", ".join(tags)}},
        )
        logging.info(f"Tagged customer {customer.get('id')} with '{tag}'")
