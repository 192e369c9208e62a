import enum
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Set, Any, Iterable
from pydantic import BaseModel, Field

from ..errors import StoreError
from ..receipt.models import ReceiptInfo

# Canonical models
class TransactionState(str, enum.Enum):
    PURCHASING = "purchasing"
    PURCHASED = "purchased"
    FAILED = "failed"
    RESTORED = "restored"
    DEFERRED = "deferred"

class Product(BaseModel):
    product_id: str
    localized_title: str = ""
    localized_description: str = ""
    price: Decimal = Decimal("0")
    currency: str = "USD"
    handle: Optional[Any] = Field(default=None, exclude=True, repr=False)  # platform product object

class PaymentRequest(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)
    application_username: str = ""

class PaymentTransaction(BaseModel):
    transaction_id: Optional[str] = None  # not assigned while purchasing
    product_id: str
    state: TransactionState
    transaction_date: Optional[datetime] = None
    original_transaction_id: Optional[str] = None
    quantity: int = 1
    error: Optional[StoreError] = None  # set for failed transactions

class RetrieveResults(BaseModel):
    retrieved_products: List[Product] = Field(default_factory=list)
    invalid_product_ids: Set[str] = Field(default_factory=set)
    error: Optional[StoreError] = None

class VerifyReceiptResult(BaseModel):
    receipt: Optional[ReceiptInfo] = None
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.receipt is not None


class TransactionObserver(ABC):
    """Receives updates delivered by a payment queue, possibly from another thread."""

    @abstractmethod
    def on_transactions_updated(self, transactions: List[PaymentTransaction]) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_restore_completed(self) -> None:
        """The batch started by restore_completed_transactions has been fully delivered."""
        raise NotImplementedError

    @abstractmethod
    def on_restore_failed(self, error: Any) -> None:
        raise NotImplementedError


class PaymentQueueBase(ABC):
    """
    Payment queue interface. Implementations deliver transaction updates
    asynchronously to registered observers through the _notify_* helpers.
    """

    def __init__(self):
        self._observers: List[TransactionObserver] = []

    @abstractmethod
    def can_make_payments(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def add_payment(self, request: PaymentRequest) -> None:
        """
        Submit a payment. The outcome arrives later as transaction updates.
        """
        raise NotImplementedError

    @abstractmethod
    def restore_completed_transactions(self, application_username: str = "") -> None:
        raise NotImplementedError

    @abstractmethod
    def finish_transaction(self, transaction_id: str) -> None:
        raise NotImplementedError

    def add_observer(self, observer: TransactionObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: TransactionObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify_updated(self, transactions: Iterable[PaymentTransaction]) -> None:
        batch = list(transactions)
        for observer in list(self._observers):
            observer.on_transactions_updated(batch)

    def _notify_restore_completed(self) -> None:
        for observer in list(self._observers):
            observer.on_restore_completed()

    def _notify_restore_failed(self, error: Any) -> None:
        for observer in list(self._observers):
            observer.on_restore_failed(error)


class ProductsInfoBase(ABC):
    @abstractmethod
    def fetch_products(self, product_ids: Set[str]) -> RetrieveResults:
        """
        Look up product metadata. Unknown ids go to invalid_product_ids.
        """
        raise NotImplementedError


class ReceiptValidatorBase(ABC):
    @abstractmethod
    def validate(self, receipt_data: bytes, shared_secret: Optional[str] = None) -> VerifyReceiptResult:
        """
        Validate raw receipt bytes with a validation service and parse the result.
        """
        raise NotImplementedError
