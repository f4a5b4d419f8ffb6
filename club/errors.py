"""
Error taxonomy for subscription sagas.

Every error carries the HTTP status the request surface should answer with.
Services raise these; handlers convert them to ``{"success": False}``
envelopes without inspecting the message.
"""

from typing import Any, Dict, Optional


class ClubError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ClubError):
    """Missing/invalid input, invalid track/type/coupon, duplicates."""

    status_code = 422
    code = "validation_error"


class NotFoundError(ClubError):
    """Subscription, plan, customer or ledger row absent."""

    status_code = 404
    code = "not_found"


class OutOfStockError(ClubError):
    """A guarded ledger reservation affected zero rows."""

    status_code = 422
    code = "out_of_stock"


class IntegrityError(ClubError):
    """Downstream success without expected fields, or a row-count mismatch."""

    status_code = 500
    code = "integrity_error"


class ExternalServiceError(ClubError):
    """A billing, storefront, queue or store call raised or timed out."""

    status_code = 500
    code = "external_service_error"
