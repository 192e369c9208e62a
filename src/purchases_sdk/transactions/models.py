"""Models for purchase and restore flows."""

import enum
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..connectors.base import PaymentTransaction, TransactionState
from ..errors import StoreError


class Purchase(BaseModel):
    """A successfully purchased or restored transaction handed to the caller."""
    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(default=1)
    transaction_id: str = Field(..., description="Queue transaction ID")
    transaction_date: Optional[datetime] = Field(None)
    original_transaction_id: Optional[str] = Field(None)
    needs_finish_transaction: bool = Field(
        default=False,
        description="True when the caller must call finish_transaction after delivering content",
    )

    @classmethod
    def from_transaction(cls, transaction: PaymentTransaction, atomically: bool) -> "Purchase":
        return cls(
            product_id=transaction.product_id,
            quantity=transaction.quantity,
            transaction_id=transaction.transaction_id or "",
            transaction_date=transaction.transaction_date,
            original_transaction_id=transaction.original_transaction_id,
            needs_finish_transaction=not atomically,
        )


# Classification of a single terminal queue update.
class TransactionPurchased(BaseModel):
    kind: Literal["purchased"] = "purchased"
    purchase: Purchase


class TransactionFailed(BaseModel):
    kind: Literal["failed"] = "failed"
    error: StoreError


class TransactionRestored(BaseModel):
    kind: Literal["restored"] = "restored"
    purchase: Purchase


TransactionResult = Union[TransactionPurchased, TransactionFailed, TransactionRestored]


class PaymentOptions(BaseModel):
    """Options recognised by purchase and restore requests."""
    quantity: int = Field(default=1, ge=1)
    atomically: bool = Field(
        default=True,
        description="Finish the transaction as soon as it succeeds",
    )
    application_username: str = Field(
        default="",
        description="Opaque identifier for the user's account on your system",
    )


class PurchaseSuccess(BaseModel):
    kind: Literal["success"] = "success"
    purchase: Purchase


class PurchaseError(BaseModel):
    kind: Literal["error"] = "error"
    error: StoreError


PurchaseResult = Union[PurchaseSuccess, PurchaseError]


class RestoreFailure(BaseModel):
    error: StoreError
    product_id: Optional[str] = None


class RestoreResults(BaseModel):
    restored_purchases: List[Purchase] = Field(default_factory=list)
    restore_failed_purchases: List[RestoreFailure] = Field(default_factory=list)


class RequestKind(str, enum.Enum):
    PURCHASE = "purchase"
    RESTORE = "restore"


@dataclass
class PendingPaymentRequest:
    """An outstanding purchase or restore waiting for queue updates.

    ``future`` is the resolver handle; ``resolved`` guards against a second
    resolution.
    """
    kind: RequestKind
    options: PaymentOptions
    product_id: Optional[str] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    future: Future = field(default_factory=Future)
    resolved: bool = False
    results: List[TransactionResult] = field(default_factory=list)

    def claims(self, transaction: PaymentTransaction) -> bool:
        """Whether this request is waiting for ``transaction``'s product."""
        return (
            self.kind == RequestKind.PURCHASE
            and not self.resolved
            and self.product_id == transaction.product_id
        )


TERMINAL_STATES = frozenset(
    {TransactionState.PURCHASED, TransactionState.FAILED, TransactionState.RESTORED}
)
