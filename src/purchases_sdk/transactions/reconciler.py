"""Matching of asynchronous payment queue updates to outstanding requests."""

import logging
import threading
from collections import OrderedDict, deque
from concurrent.futures import Future
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Deque, List, Optional

from ..connectors.base import (
    PaymentQueueBase,
    PaymentRequest,
    PaymentTransaction,
    TransactionObserver,
    TransactionState,
)
from ..errors import StoreError
from .models import (
    TERMINAL_STATES,
    PaymentOptions,
    PendingPaymentRequest,
    Purchase,
    PurchaseError,
    PurchaseResult,
    PurchaseSuccess,
    RequestKind,
    RestoreFailure,
    RestoreResults,
    TransactionFailed,
    TransactionPurchased,
    TransactionRestored,
    TransactionResult,
)

logger = logging.getLogger(__name__)

CompletionHandler = Callable[[List[Purchase]], None]

# Finished transaction ids remembered for idempotent finish_transaction.
FINISHED_HISTORY_SIZE = 1024


@dataclass
class _CompleteTransactionsHandler:
    atomically: bool
    callback: CompletionHandler


class TransactionReconciler(TransactionObserver):
    """Resolves purchase and restore requests from payment queue updates.

    The pending tables are touched both by callers submitting requests and
    by the queue's delivery thread, so every mutation happens under one
    lock. Futures are resolved and collaborators called only after the lock
    is released, in the order the updates were delivered.
    """

    def __init__(self, payment_queue: PaymentQueueBase, finished_history: int = FINISHED_HISTORY_SIZE):
        """Initialize the reconciler and register it with the queue.

        Args:
            payment_queue: Queue that receives payments and delivers updates.
            finished_history: How many finished transaction ids are remembered
                to make repeated finish_transaction calls no-ops.
        """
        self.payment_queue = payment_queue
        self._lock = threading.RLock()
        self._purchases: "OrderedDict[str, PendingPaymentRequest]" = OrderedDict()
        self._restores: Deque[PendingPaymentRequest] = deque()
        self._complete_handler: Optional[_CompleteTransactionsHandler] = None
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self._finished_history = finished_history
        self._closed = False
        payment_queue.add_observer(self)

    # Requests

    def start_payment(
        self,
        product_id: str,
        options: Optional[PaymentOptions] = None,
    ) -> "Future[PurchaseResult]":
        """Submit a payment and return a future for its single outcome.

        A purchase for a product that already has one pending is queued
        behind it: both payments are submitted and terminal updates for the
        product resolve the oldest request first.

        Args:
            product_id: Product to purchase.
            options: Quantity, atomicity and application username.

        Returns:
            Future resolving to PurchaseSuccess or PurchaseError.
        """
        options = options or PaymentOptions()
        pending = PendingPaymentRequest(
            kind=RequestKind.PURCHASE,
            product_id=product_id,
            options=options,
        )

        with self._lock:
            if self._closed:
                pending.resolved = True
                closed = True
            else:
                closed = False
                queued_behind = sum(
                    1 for p in self._purchases.values() if p.product_id == product_id
                )
                self._purchases[pending.request_id] = pending

        if closed:
            pending.future.set_result(PurchaseError(error=_closed_error()))
            return pending.future

        if queued_behind:
            logger.info(
                f"Purchase {pending.request_id} for {product_id} queued behind "
                f"{queued_behind} pending request(s)"
            )
        else:
            logger.info(f"Purchase {pending.request_id} registered for {product_id}")

        request = PaymentRequest(
            product_id=product_id,
            quantity=options.quantity,
            application_username=options.application_username,
        )
        try:
            self.payment_queue.add_payment(request)
        except Exception as e:
            logger.error(f"Payment queue rejected purchase of {product_id}: {e}")
            if self._mark_resolved(pending):
                pending.future.set_result(PurchaseError(error=StoreError.queue_error(e)))
        return pending.future

    def restore_purchases(
        self,
        options: Optional[PaymentOptions] = None,
    ) -> "Future[RestoreResults]":
        """Restore previously completed purchases.

        Only one restore runs against the queue at a time; later requests
        wait and are started in order once the active one resolves.

        Args:
            options: Atomicity and application username; quantity is ignored.

        Returns:
            Future resolving to RestoreResults once the whole batch arrived.
        """
        options = options or PaymentOptions()
        pending = PendingPaymentRequest(kind=RequestKind.RESTORE, options=options)

        with self._lock:
            if self._closed:
                pending.resolved = True
                closed = True
            else:
                closed = False
                self._restores.append(pending)
                start_now = len(self._restores) == 1

        if closed:
            pending.future.set_result(
                RestoreResults(restore_failed_purchases=[RestoreFailure(error=_closed_error())])
            )
            return pending.future

        if start_now:
            self._start_restore(pending)
        else:
            logger.info(f"Restore {pending.request_id} queued behind an active restore")
        return pending.future

    def complete_transactions(self, atomically: bool, callback: CompletionHandler) -> None:
        """Register the handler for updates no request is waiting for.

        These are typically transactions left unfinished by a previous
        session. The handler receives a list of purchases per delivered batch.
        """
        with self._lock:
            if self._complete_handler is not None:
                logger.warning("complete_transactions called again, replacing the previous handler")
            self._complete_handler = _CompleteTransactionsHandler(atomically, callback)

    def finish_transaction(self, transaction_id: str) -> None:
        """Acknowledge a transaction with the queue.

        Repeated calls are no-ops while the id is among the last
        ``finished_history`` finished transactions.
        """
        with self._lock:
            if transaction_id in self._finished:
                logger.debug(f"Transaction {transaction_id} already finished")
                return
            self._finished[transaction_id] = None
            while len(self._finished) > self._finished_history:
                self._finished.popitem(last=False)
        try:
            self.payment_queue.finish_transaction(transaction_id)
        except Exception:
            with self._lock:
                self._finished.pop(transaction_id, None)
            raise
        logger.info(f"Finished transaction {transaction_id}")

    def close(self) -> None:
        """Resolve every outstanding request with a queue error and detach."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            outstanding = list(self._purchases.values()) + list(self._restores)
            self._purchases.clear()
            self._restores.clear()
            for pending in outstanding:
                pending.resolved = True

        self.payment_queue.remove_observer(self)
        if outstanding:
            logger.warning(f"Closing with {len(outstanding)} outstanding request(s)")

        for pending in outstanding:
            if pending.kind == RequestKind.PURCHASE:
                pending.future.set_result(PurchaseError(error=_closed_error()))
            else:
                pending.results.append(TransactionFailed(error=_closed_error()))
                pending.future.set_result(self._restore_results(pending.results))

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._purchases) + len(self._restores)

    # TransactionObserver

    def on_transactions_updated(self, transactions: List[PaymentTransaction]) -> None:
        actions: List[Callable[[], Any]] = []
        completed: List[Purchase] = []

        with self._lock:
            for transaction in transactions:
                self._process_transaction(transaction, actions, completed)
            handler = self._complete_handler

        if completed and handler is not None:
            actions.append(partial(handler.callback, completed))
        self._run(actions)

    def on_restore_completed(self) -> None:
        self._finish_restore(None)

    def on_restore_failed(self, error: Any) -> None:
        self._finish_restore(_as_store_error(error))

    # Internals

    def _process_transaction(
        self,
        transaction: PaymentTransaction,
        actions: List[Callable[[], Any]],
        completed: List[Purchase],
    ) -> None:
        """Route one update to the request it belongs to. Caller holds the lock."""
        state = transaction.state
        if state not in TERMINAL_STATES:
            logger.debug(f"Transaction for {transaction.product_id} is {state.value}")
            return

        restore = self._restores[0] if self._restores else None

        # A restore collecting its batch owns restored updates.
        if state == TransactionState.RESTORED and restore is not None:
            self._collect_for_restore(restore, transaction, actions)
            return

        pending = self._oldest_purchase_for(transaction)
        if pending is not None:
            pending.resolved = True
            del self._purchases[pending.request_id]
            atomically = pending.options.atomically
            result = self._classify(transaction, atomically)
            if isinstance(result, TransactionFailed) or atomically:
                self._queue_finish(actions, transaction)
            actions.append(partial(pending.future.set_result, self._purchase_result(result)))
            logger.info(
                f"Purchase {pending.request_id} for {transaction.product_id} "
                f"resolved as {result.kind}"
            )
            return

        if restore is not None:
            self._collect_for_restore(restore, transaction, actions)
            return

        handler = self._complete_handler
        if handler is not None:
            if state == TransactionState.FAILED:
                logger.warning(
                    f"Finishing failed transaction {transaction.transaction_id} "
                    f"for {transaction.product_id} with no pending request"
                )
                self._queue_finish(actions, transaction)
                return
            completed.append(Purchase.from_transaction(transaction, handler.atomically))
            if handler.atomically:
                self._queue_finish(actions, transaction)
            return

        logger.warning(
            f"Unclaimed {state.value} transaction {transaction.transaction_id} "
            f"for {transaction.product_id} left in the queue"
        )

    def _collect_for_restore(
        self,
        restore: PendingPaymentRequest,
        transaction: PaymentTransaction,
        actions: List[Callable[[], Any]],
    ) -> None:
        atomically = restore.options.atomically
        result = self._classify(transaction, atomically)
        restore.results.append(result)
        # Purchased updates on this path stay unfinished for complete_transactions.
        if isinstance(result, TransactionFailed) or (
            isinstance(result, TransactionRestored) and atomically
        ):
            self._queue_finish(actions, transaction)

    def _finish_restore(self, error: Optional[StoreError]) -> None:
        with self._lock:
            if not self._restores:
                logger.warning("Restore completion signalled with no restore pending")
                return
            restore = self._restores.popleft()
            restore.resolved = True
            if error is not None:
                restore.results.append(TransactionFailed(error=error))
            next_restore = self._restores[0] if self._restores else None

        results = self._restore_results(restore.results)
        logger.info(
            f"Restore {restore.request_id} finished: "
            f"{len(results.restored_purchases)} restored, "
            f"{len(results.restore_failed_purchases)} failed"
        )
        restore.future.set_result(results)

        if next_restore is not None:
            self._start_restore(next_restore)

    def _start_restore(self, pending: PendingPaymentRequest) -> None:
        logger.info(f"Restore {pending.request_id} started")
        try:
            self.payment_queue.restore_completed_transactions(
                pending.options.application_username
            )
        except Exception as e:
            logger.error(f"Payment queue rejected restore: {e}")
            self.on_restore_failed(e)

    def _queue_finish(self, actions: List[Callable[[], Any]], transaction: PaymentTransaction) -> None:
        if transaction.transaction_id:
            actions.append(partial(self.finish_transaction, transaction.transaction_id))
        else:
            logger.warning(f"Cannot finish {transaction.product_id} update without a transaction id")

    def _oldest_purchase_for(self, transaction: PaymentTransaction) -> Optional[PendingPaymentRequest]:
        for pending in self._purchases.values():
            if pending.claims(transaction):
                return pending
        return None

    def _mark_resolved(self, pending: PendingPaymentRequest) -> bool:
        """Flip the resolved guard; False if someone else got there first."""
        with self._lock:
            if pending.resolved:
                return False
            pending.resolved = True
            self._purchases.pop(pending.request_id, None)
            return True

    def _classify(self, transaction: PaymentTransaction, atomically: bool) -> TransactionResult:
        state = transaction.state
        if state == TransactionState.PURCHASED:
            return TransactionPurchased(purchase=Purchase.from_transaction(transaction, atomically))
        if state == TransactionState.RESTORED:
            return TransactionRestored(purchase=Purchase.from_transaction(transaction, atomically))
        if state == TransactionState.FAILED:
            error = transaction.error or StoreError.queue_error(
                f"Transaction {transaction.transaction_id} failed"
            )
            return TransactionFailed(error=error)
        raise ValueError(f"Transaction state {state.value} is not terminal")

    def _purchase_result(self, result: TransactionResult) -> PurchaseResult:
        if isinstance(result, TransactionPurchased):
            return PurchaseSuccess(purchase=result.purchase)
        if isinstance(result, TransactionFailed):
            return PurchaseError(error=result.error)
        if isinstance(result, TransactionRestored):
            return PurchaseError(error=StoreError.internal_inconsistency(
                f"Cannot restore product {result.purchase.product_id} from purchase path"
            ))
        raise TypeError(f"Unknown transaction result: {result!r}")

    def _restore_results(self, results: List[TransactionResult]) -> RestoreResults:
        restored: List[Purchase] = []
        failed: List[RestoreFailure] = []
        for result in results:
            if isinstance(result, TransactionRestored):
                restored.append(result.purchase)
            elif isinstance(result, TransactionPurchased):
                product_id = result.purchase.product_id
                failed.append(RestoreFailure(
                    error=StoreError.internal_inconsistency(
                        f"Cannot purchase product {product_id} from restore purchases path"
                    ),
                    product_id=product_id,
                ))
            elif isinstance(result, TransactionFailed):
                failed.append(RestoreFailure(error=result.error))
            else:
                raise TypeError(f"Unknown transaction result: {result!r}")
        return RestoreResults(restored_purchases=restored, restore_failed_purchases=failed)

    def _run(self, actions: List[Callable[[], Any]]) -> None:
        for action in actions:
            try:
                action()
            except Exception:
                # One misbehaving collaborator call must not strand later requests.
                logger.exception("Error while applying transaction update")


def _closed_error() -> StoreError:
    return StoreError.queue_error("payment queue closed")


def _as_store_error(error: Any) -> StoreError:
    if isinstance(error, StoreError):
        return error
    return StoreError.queue_error(error)
