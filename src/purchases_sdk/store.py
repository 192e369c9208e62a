"""Public purchase API composing products, transactions and receipts."""

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Iterable, Optional, TypeVar, Union

from .config import StoreSettings
from .connectors.base import (
    PaymentQueueBase,
    ProductsInfoBase,
    ReceiptValidatorBase,
    RetrieveResults,
    VerifyReceiptResult,
)
from .errors import ErrorKind, StoreError
from .products import ProductsInfoController
from .receipt.models import (
    ReceiptInfo,
    SubscriptionType,
    VerifyPurchaseResult,
    VerifySubscriptionResult,
)
from .receipt.verifier import PurchaseVerifier
from .transactions.models import (
    PaymentOptions,
    Purchase,
    PurchaseError,
    PurchaseResult,
    RestoreResults,
)
from .transactions.reconciler import CompletionHandler, TransactionReconciler

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Store:
    """Context object owning the reconciler, verifier and product cache.

    Construct one at startup and hand it to the code that needs it; use
    set_default_store() if a process-wide instance is more convenient.
    Every asynchronous operation returns a ``concurrent.futures.Future``
    immediately (``asyncio.wrap_future`` adapts it for coroutines) and
    optionally calls ``completion`` with the result.
    """

    def __init__(
        self,
        payment_queue: PaymentQueueBase,
        products_info: ProductsInfoBase,
        receipt_validator: Optional[ReceiptValidatorBase] = None,
        settings: Optional[StoreSettings] = None,
    ):
        """Initialize the store.

        Args:
            payment_queue: Platform payment queue collaborator.
            products_info: Product metadata collaborator.
            receipt_validator: Default validator used by verify_receipt.
            settings: Store settings; defaults to StoreSettings().
        """
        self.settings = settings or StoreSettings()
        self.payment_queue = payment_queue
        self.receipt_validator = receipt_validator
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="purchases",
        )
        self.products = ProductsInfoController(products_info, self._executor)
        self.reconciler = TransactionReconciler(payment_queue)
        self.verifier = PurchaseVerifier()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Purchases

    @property
    def can_make_payments(self) -> bool:
        return self.payment_queue.can_make_payments()

    def retrieve_products_info(
        self,
        product_ids: Iterable[str],
        completion: Optional[Callable[[RetrieveResults], None]] = None,
    ) -> "Future[RetrieveResults]":
        return _with_completion(self.products.retrieve_products_info(product_ids), completion)

    def purchase_product(
        self,
        product_id: str,
        options: Optional[PaymentOptions] = None,
        completion: Optional[Callable[[PurchaseResult], None]] = None,
    ) -> "Future[PurchaseResult]":
        """Purchase a product, fetching its metadata first if it is not cached.

        Nothing reaches the payment queue when payments are disabled, the
        product lookup fails, or the product id is unknown.

        Args:
            product_id: Product identifier.
            options: Quantity, atomicity and application username.
            completion: Called once with the result.

        Returns:
            Future resolving to PurchaseSuccess or PurchaseError.
        """
        options = options or PaymentOptions()

        if not self.can_make_payments:
            logger.warning(f"Purchase of {product_id} refused: payments are disabled")
            future = _resolved(PurchaseError(error=StoreError.payments_not_allowed()))
        elif self.products.cached(product_id) is not None:
            future = self.reconciler.start_payment(product_id, options)
        else:
            future = Future()
            lookup = self.products.retrieve_products_info([product_id])
            lookup.add_done_callback(
                lambda done: self._purchase_after_lookup(product_id, options, done, future)
            )
        return _with_completion(future, completion)

    def restore_purchases(
        self,
        options: Optional[PaymentOptions] = None,
        completion: Optional[Callable[[RestoreResults], None]] = None,
    ) -> "Future[RestoreResults]":
        return _with_completion(self.reconciler.restore_purchases(options), completion)

    def complete_transactions(
        self,
        completion: CompletionHandler,
        atomically: bool = True,
    ) -> None:
        """Handle transactions left over from previous sessions.

        Call this once at startup, before other store calls, so pending
        transactions are delivered as soon as the queue reports them.
        """
        self.reconciler.complete_transactions(atomically, completion)

    def finish_transaction(self, transaction: Union[Purchase, str]) -> None:
        """Finish a non-atomic transaction once its content has been delivered."""
        transaction_id = transaction.transaction_id if isinstance(transaction, Purchase) else transaction
        self.reconciler.finish_transaction(transaction_id)

    # Receipts

    @property
    def local_receipt_data(self) -> Optional[bytes]:
        """Receipt bytes from ``settings.receipt_path``, or None if unavailable."""
        path = self.settings.receipt_path
        if not path or not os.path.isfile(path):
            return None
        with open(path, "rb") as f:
            return f.read()

    def verify_receipt(
        self,
        validator: Optional[ReceiptValidatorBase] = None,
        password: Optional[str] = None,
        completion: Optional[Callable[[VerifyReceiptResult], None]] = None,
    ) -> "Future[VerifyReceiptResult]":
        """Validate the local receipt.

        Args:
            validator: Validator to use; defaults to the store's validator.
            password: Shared secret, only needed for auto-renewable
                subscriptions; defaults to ``settings.shared_secret``.
            completion: Called once with the result.
        """
        validator = validator or self.receipt_validator
        receipt_data = self.local_receipt_data

        if receipt_data is None:
            future = _resolved(VerifyReceiptResult(error=StoreError.validator_error("No receipt data")))
        elif validator is None:
            future = _resolved(VerifyReceiptResult(
                error=StoreError.validator_error("No receipt validator configured")
            ))
        else:
            secret = password or self.settings.shared_secret
            try:
                future = self._executor.submit(self._validate, validator, receipt_data, secret)
            except RuntimeError as e:
                logger.error(f"Cannot schedule receipt validation: {e}")
                future = _resolved(VerifyReceiptResult(error=StoreError.validator_error(e)))
        return _with_completion(future, completion)

    def verify_purchase(self, product_id: str, receipt: ReceiptInfo) -> VerifyPurchaseResult:
        return self.verifier.verify_purchase(product_id, receipt)

    def verify_subscription(
        self,
        subscription_type: SubscriptionType,
        product_id: str,
        receipt: ReceiptInfo,
        valid_until: Optional[datetime] = None,
    ) -> VerifySubscriptionResult:
        return self.verifier.verify_subscription(
            subscription_type, product_id, receipt, reference_date=valid_until
        )

    def close(self) -> None:
        """Resolve outstanding requests with a queue error and stop worker threads."""
        self.reconciler.close()
        self._executor.shutdown(wait=False)

    # Internals

    def _purchase_after_lookup(
        self,
        product_id: str,
        options: PaymentOptions,
        lookup: "Future[RetrieveResults]",
        future: "Future[PurchaseResult]",
    ) -> None:
        results = lookup.result()
        found = any(p.product_id == product_id for p in results.retrieved_products)

        if found:
            payment = self.reconciler.start_payment(product_id, options)
            payment.add_done_callback(lambda done: future.set_result(done.result()))
            return

        if results.error is not None:
            error = results.error
            if error.kind != ErrorKind.PRODUCT_FETCH_FAILED:
                error = StoreError.product_fetch_failed(error)
        else:
            error = StoreError.invalid_product_id(product_id)
        logger.warning(f"Purchase of {product_id} not started: {error}")
        future.set_result(PurchaseError(error=error))

    def _validate(
        self,
        validator: ReceiptValidatorBase,
        receipt_data: bytes,
        shared_secret: Optional[str],
    ) -> VerifyReceiptResult:
        try:
            return validator.validate(receipt_data, shared_secret)
        except Exception as e:
            logger.error(f"Receipt validator raised: {e}")
            return VerifyReceiptResult(error=StoreError.validator_error(e))


def _resolved(value: T) -> "Future[T]":
    future: "Future[T]" = Future()
    future.set_result(value)
    return future


def _with_completion(future: "Future[T]", completion: Optional[Callable[[T], None]]) -> "Future[T]":
    if completion is not None:
        future.add_done_callback(lambda done: completion(done.result()))
    return future


_default_store: Optional[Store] = None
_default_lock = threading.Lock()


def set_default_store(store: Optional[Store]) -> None:
    """Install (or clear, with None) the process-wide default store."""
    global _default_store
    with _default_lock:
        _default_store = store


def get_default_store() -> Store:
    """Return the process-wide default store.

    Raises:
        RuntimeError: If set_default_store() has not been called.
    """
    with _default_lock:
        if _default_store is None:
            raise RuntimeError("No default store configured; call set_default_store() at startup")
        return _default_store
