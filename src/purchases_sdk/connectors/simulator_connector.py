"""Simulator connectors for exercising purchase flows without a platform store."""

import itertools
import random
import threading
import logging
from typing import Dict, Any, Optional, List, Iterable, Set
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..errors import StoreError
from .base import (
    PaymentQueueBase,
    PaymentRequest,
    PaymentTransaction,
    Product,
    ProductsInfoBase,
    RetrieveResults,
    TransactionState,
)

logger = logging.getLogger(__name__)


class SimulatorScenario(str, Enum):
    """Predefined test scenarios for the simulator."""
    SUCCESS = "success"
    FAILURE = "failure"
    DEFERRED = "deferred"
    TIMEOUT = "timeout"


@dataclass
class SimulatedTransaction:
    """In-memory representation of a simulated transaction."""
    id: str
    product_id: str
    quantity: int
    state: TransactionState
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    original_transaction_id: Optional[str] = None
    application_username: str = ""
    finished: bool = False

    def to_event(self, error: Optional[StoreError] = None) -> PaymentTransaction:
        return PaymentTransaction(
            transaction_id=self.id,
            product_id=self.product_id,
            state=self.state,
            transaction_date=self.created_at,
            original_transaction_id=self.original_transaction_id,
            quantity=self.quantity,
            error=error,
        )


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    success_rate: float = 1.0  # 0.0 to 1.0
    deferred_rate: float = 0.0  # Rate of payments waiting for approval
    delay_ms: int = 0  # Deliver updates from a timer thread after this delay
    timeout_rate: float = 0.0  # Rate of add_payment raising TimeoutError
    payments_enabled: bool = True
    seed: Optional[int] = None  # Random seed for reproducibility


class SimulatorPaymentQueue(PaymentQueueBase):
    """
    In-memory payment queue delivering transaction updates to observers.

    Features:
    - Purchase history replayed by restore_completed_transactions
    - Configurable failure / deferral rates and delivery delay
    - Special application usernames for specific scenarios
    - emit() for injecting arbitrary updates
    """

    # Special application usernames for triggering specific behaviors
    USER_DECLINE = "sim_user_decline"
    USER_DEFERRED = "sim_user_deferred"
    USER_TIMEOUT = "sim_user_timeout"
    USER_RESTORE_ERROR = "sim_user_restore_error"

    def __init__(self, config: Optional[SimulatorConfig] = None):
        """Initialize the simulator with optional configuration."""
        super().__init__()
        self.config = config or SimulatorConfig()
        self._transactions: Dict[str, SimulatedTransaction] = {}
        self._ids = itertools.count(1000000001)
        self._rng = random.Random(self.config.seed)
        self._lock = threading.Lock()
        self.payments: List[PaymentRequest] = []
        self.restore_requests: List[str] = []
        self.finished: List[str] = []
        logger.info("SimulatorPaymentQueue initialized")

    def _generate_id(self) -> str:
        """Generate a numeric transaction ID, increasing like App Store ids."""
        with self._lock:
            return str(next(self._ids))

    def _deliver(self, callback, *args) -> None:
        """Run ``callback`` now or on a timer thread when a delay is configured."""
        if self.config.delay_ms > 0:
            timer = threading.Timer(self.config.delay_ms / 1000.0, callback, args=args)
            timer.daemon = True
            timer.start()
        else:
            callback(*args)

    def _determine_scenario(self, username: str) -> SimulatorScenario:
        """Determine scenario based on application username or random config."""
        user_scenarios = {
            self.USER_DECLINE: SimulatorScenario.FAILURE,
            self.USER_DEFERRED: SimulatorScenario.DEFERRED,
            self.USER_TIMEOUT: SimulatorScenario.TIMEOUT,
        }
        if username in user_scenarios:
            return user_scenarios[username]
        if self._rng.random() < self.config.timeout_rate:
            return SimulatorScenario.TIMEOUT
        if self._rng.random() >= self.config.success_rate:
            return SimulatorScenario.FAILURE
        if self._rng.random() < self.config.deferred_rate:
            return SimulatorScenario.DEFERRED
        return SimulatorScenario.SUCCESS

    def can_make_payments(self) -> bool:
        return self.config.payments_enabled

    def add_payment(self, request: PaymentRequest) -> None:
        """Simulate a payment, delivering purchasing and then a terminal update."""
        scenario = self._determine_scenario(request.application_username)
        if scenario == SimulatorScenario.TIMEOUT:
            raise TimeoutError("Simulated timeout")

        self.payments.append(request)
        purchasing = PaymentTransaction(
            product_id=request.product_id,
            state=TransactionState.PURCHASING,
            quantity=request.quantity,
        )

        if scenario == SimulatorScenario.DEFERRED:
            deferred = PaymentTransaction(
                product_id=request.product_id,
                state=TransactionState.DEFERRED,
                quantity=request.quantity,
            )
            self._deliver(self._notify_updated, [purchasing, deferred])
            return

        txn_id = self._generate_id()
        if scenario == SimulatorScenario.FAILURE:
            txn = SimulatedTransaction(
                id=txn_id, product_id=request.product_id, quantity=request.quantity,
                state=TransactionState.FAILED, application_username=request.application_username,
            )
            error = StoreError.queue_error("Payment declined", code="payment_cancelled")
            self._transactions[txn_id] = txn
            self._deliver(self._notify_updated, [purchasing, txn.to_event(error)])
            return

        txn = SimulatedTransaction(
            id=txn_id, product_id=request.product_id, quantity=request.quantity,
            state=TransactionState.PURCHASED, original_transaction_id=txn_id,
            application_username=request.application_username,
        )
        self._transactions[txn_id] = txn
        self._deliver(self._notify_updated, [purchasing, txn.to_event()])

    def restore_completed_transactions(self, application_username: str = "") -> None:
        """Replay every purchased transaction as a restored one, then signal completion."""
        self.restore_requests.append(application_username)
        if application_username == self.USER_RESTORE_ERROR:
            self._deliver(self._notify_restore_failed, StoreError.queue_error("Simulated restore failure"))
            return

        restored = []
        for original in self.history():
            txn = SimulatedTransaction(
                id=self._generate_id(), product_id=original.product_id,
                quantity=original.quantity, state=TransactionState.RESTORED,
                original_transaction_id=original.id,
                application_username=application_username,
            )
            self._transactions[txn.id] = txn
            restored.append(txn.to_event())

        def deliver_batch():
            if restored:
                self._notify_updated(restored)
            self._notify_restore_completed()

        self._deliver(deliver_batch)

    def finish_transaction(self, transaction_id: str) -> None:
        self.finished.append(transaction_id)
        txn = self._transactions.get(transaction_id)
        if txn is not None:
            txn.finished = True

    def emit(self, transactions: Iterable[PaymentTransaction]) -> None:
        """Deliver arbitrary updates to observers (for testing)."""
        batch = list(transactions)
        for event in batch:
            if event.transaction_id and event.transaction_id not in self._transactions:
                self._transactions[event.transaction_id] = SimulatedTransaction(
                    id=event.transaction_id, product_id=event.product_id,
                    quantity=event.quantity, state=event.state,
                    original_transaction_id=event.original_transaction_id,
                )
        self._deliver(self._notify_updated, batch)

    def complete_restore(self) -> None:
        """Signal the end of a restore batch (for testing)."""
        self._deliver(self._notify_restore_completed)

    def fail_restore(self, error: Any) -> None:
        """Signal a restore failure (for testing)."""
        self._deliver(self._notify_restore_failed, error)

    def replay_unfinished(self) -> None:
        """Redeliver unfinished terminal transactions, as a relaunched app would see them."""
        pending = [
            txn.to_event() for txn in self._transactions.values()
            if not txn.finished and txn.state != TransactionState.FAILED
        ]
        if pending:
            self._deliver(self._notify_updated, pending)

    def history(self) -> List[SimulatedTransaction]:
        """Purchased transactions in purchase order."""
        return [t for t in self._transactions.values() if t.state == TransactionState.PURCHASED]

    def get_transaction(self, transaction_id: str) -> Optional[SimulatedTransaction]:
        """Get a transaction from in-memory storage (for testing)."""
        return self._transactions.get(transaction_id)

    def clear_transactions(self) -> None:
        """Clear all stored transactions (for test cleanup)."""
        self._transactions.clear()
        self.payments.clear()
        self.finished.clear()


class SimulatorProductsInfo(ProductsInfoBase):
    """In-memory product catalogue."""

    def __init__(self, products: Iterable[Product] = (), error: Optional[str] = None):
        """
        Args:
            products: Catalogue contents.
            error: When set, every lookup fails with this message.
        """
        self.catalog: Dict[str, Product] = {p.product_id: p for p in products}
        self.error = error
        self.requests: List[Set[str]] = []

    def fetch_products(self, product_ids: Set[str]) -> RetrieveResults:
        self.requests.append(set(product_ids))
        if self.error:
            return RetrieveResults(error=StoreError.product_fetch_failed(self.error))
        found = [self.catalog[pid] for pid in sorted(product_ids) if pid in self.catalog]
        invalid = {pid for pid in product_ids if pid not in self.catalog}
        return RetrieveResults(retrieved_products=found, invalid_product_ids=invalid)
