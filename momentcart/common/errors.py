"""Checkout engine error taxonomy.

Every error is recoverable by the caller: retry, show the shopper a message or change
the cart. Each carries a stable code and the HTTP status the API layer renders it with.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    LINK_UNAVAILABLE = "LINK_UNAVAILABLE"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    INVALID_OFFER = "INVALID_OFFER"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
    INVALID_STATE = "INVALID_STATE"
    RESERVATION_CONFLICT = "RESERVATION_CONFLICT"
    KEY_CONFLICT = "KEY_CONFLICT"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class CheckoutError(Exception):
    """Base error with code, user-safe message and optional details."""

    code: ErrorCode = ErrorCode.NOT_FOUND
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, **self.details}


class NotFound(CheckoutError):
    code = ErrorCode.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Any = None) -> None:
        super().__init__(f"{resource} not found", {"resource": resource, "id": str(identifier) if identifier is not None else None})


class LinkUnavailable(CheckoutError):
    """Short link is revoked, expired or has used up its clicks."""

    code = ErrorCode.LINK_UNAVAILABLE
    status_code = status.HTTP_410_GONE

    def __init__(self, code: str, reason: str) -> None:
        super().__init__(f"Link {reason}", {"link_code": code, "reason": reason})
        self.reason = reason


class InsufficientInventory(CheckoutError):
    code = ErrorCode.INSUFFICIENT_INVENTORY
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, variant_id: int, requested: int, available: int) -> None:
        super().__init__(
            f"Not enough stock for variant {variant_id}: requested={requested}, available={available}",
            {"variant_id": variant_id, "requested": requested, "available": available},
        )


class InvalidOffer(CheckoutError):
    code = ErrorCode.INVALID_OFFER
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class CurrencyMismatch(CheckoutError):
    code = ErrorCode.CURRENCY_MISMATCH
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidState(CheckoutError):
    """Requested transition is not legal from the entity's current state."""

    code = ErrorCode.INVALID_STATE
    status_code = status.HTTP_409_CONFLICT


class ReservationConflict(CheckoutError):
    code = ErrorCode.RESERVATION_CONFLICT
    status_code = status.HTTP_409_CONFLICT


class KeyConflict(CheckoutError):
    code = ErrorCode.KEY_CONFLICT
    status_code = status.HTTP_409_CONFLICT

    def __init__(self) -> None:
        super().__init__("Idempotency key already used by another creator")


class StoreUnavailable(CheckoutError):
    """Persistence layer could not be reached; safe to retry."""

    code = ErrorCode.STORE_UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "service unavailable (db)") -> None:
        super().__init__(message)
