"""
Subscription metadata as stored on billing-engine subscriptions.

Core fields are required; gift fields are an optional variant carried only
by gifted subscriptions. Everything read from the billing engine goes
through ``SubscriptionMetadata.from_subscription`` so the sagas never walk
raw dictionaries.
"""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from club.errors import IntegrityError

SUBSCRIPTION_TYPES = ("primary", "addon")


class ProductSelection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    variant_id: Optional[int] = None
    track: Optional[str] = None
    swapped: bool = False
    swapped_date: Optional[int] = None

    @field_validator("id", "variant_id", mode="before")
    @classmethod
    def _coerce_ids(cls, v: Union[int, str, None]) -> Optional[int]:
        if v in (None, "", False):
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            raise ValueError(f"expected a numeric id, got {v!r}") from None

    @field_validator("swapped", mode="before")
    @classmethod
    def _coerce_swapped(cls, v: Any) -> bool:
        return bool(v)


class GiftDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    customer_id: Optional[str] = None
    gift_code: Optional[str] = None
    gift_bundle: Optional[str] = None
    gifter_customer_id: Optional[str] = None
    gifter_order_id: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


GIFT_FIELDS = tuple(GiftDetails.model_fields.keys())


class SubscriptionMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    new: bool = False
    swap_window: Optional[str] = None
    swx: bool = False
    product: ProductSelection = Field(default_factory=ProductSelection)
    gift: Optional[GiftDetails] = None

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "SubscriptionMetadata":
        raw = dict(raw or {})
        gift_values = {key: raw.pop(key) for key in GIFT_FIELDS if raw.get(key) not in (None, "")}
        try:
            metadata = cls.model_validate(raw)
        except PydanticValidationError as e:
            raise IntegrityError("Subscription metadata is malformed.", {"errors": e.errors()}) from e
        if gift_values:
            metadata.gift = GiftDetails(**{k: str(v) for k, v in gift_values.items()})
        return metadata

    @classmethod
    def from_subscription(cls, subscription: Optional[Dict[str, Any]]) -> "SubscriptionMetadata":
        return cls.from_raw((subscription or {}).get("meta_data"))

    def to_billing(self) -> Dict[str, Any]:
        """Flat ``meta_data`` object as the billing engine stores it."""
        payload: Dict[str, Any] = {
            "new": self.new,
            "type": self.type,
            "product": self.product.model_dump(),
        }
        if self.swap_window is not None:
            payload["swap_window"] = self.swap_window
        if self.swx:
            payload["swx"] = True
        if self.gift is not None:
            payload.update({k: v for k, v in self.gift.model_dump().items() if v})
        return payload
