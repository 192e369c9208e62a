"""Error values delivered through purchase, restore and receipt results."""

import enum
from typing import Optional

from pydantic import BaseModel, Field


class ErrorKind(str, enum.Enum):
    """Categories of failures surfaced to callers."""
    PAYMENTS_NOT_ALLOWED = "payments_not_allowed"
    INVALID_PRODUCT_ID = "invalid_product_id"
    PRODUCT_FETCH_FAILED = "product_fetch_failed"
    QUEUE_ERROR = "queue_error"
    INTERNAL_INCONSISTENCY = "internal_inconsistency"
    VALIDATOR_ERROR = "validator_error"


class StoreError(BaseModel):
    """A failure reported through a result variant rather than raised.

    ``code`` carries the platform's own error code when the payment queue
    provides one (e.g. ``payment_cancelled``).
    """
    kind: ErrorKind
    message: str = Field(default="", description="Human readable description")
    cause: Optional[str] = Field(default=None, description="Underlying error, if any")
    code: Optional[str] = Field(default=None, description="Platform error code")

    def __str__(self) -> str:
        text = f"{self.kind.value}: {self.message}" if self.message else self.kind.value
        if self.cause:
            text = f"{text} ({self.cause})"
        return text

    @property
    def is_internal(self) -> bool:
        return self.kind == ErrorKind.INTERNAL_INCONSISTENCY

    @classmethod
    def payments_not_allowed(cls) -> "StoreError":
        return cls(
            kind=ErrorKind.PAYMENTS_NOT_ALLOWED,
            message="Payments are disabled on this device",
        )

    @classmethod
    def invalid_product_id(cls, product_id: str) -> "StoreError":
        return cls(kind=ErrorKind.INVALID_PRODUCT_ID, message=f"Invalid product id: {product_id}")

    @classmethod
    def product_fetch_failed(cls, cause: object) -> "StoreError":
        return cls(
            kind=ErrorKind.PRODUCT_FETCH_FAILED,
            message="Failed to retrieve product information",
            cause=str(cause),
        )

    @classmethod
    def queue_error(cls, cause: object, code: Optional[str] = None) -> "StoreError":
        return cls(
            kind=ErrorKind.QUEUE_ERROR,
            message="Payment queue reported an error",
            cause=str(cause),
            code=code,
        )

    @classmethod
    def internal_inconsistency(cls, description: str) -> "StoreError":
        return cls(kind=ErrorKind.INTERNAL_INCONSISTENCY, message=description)

    @classmethod
    def validator_error(cls, cause: object) -> "StoreError":
        return cls(
            kind=ErrorKind.VALIDATOR_ERROR,
            message="Receipt validation failed",
            cause=str(cause),
        )
