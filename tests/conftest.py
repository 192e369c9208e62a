"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("APPSTORE_BUNDLE_ID", "com.example.app")

from purchases_sdk.connectors import (
    PaymentQueueBase,
    PaymentRequest,
    PaymentTransaction,
    Product,
    SimulatorPaymentQueue,
    SimulatorProductsInfo,
    TransactionState,
)
from purchases_sdk.store import Store


class RecordingPaymentQueue(PaymentQueueBase):
    """Payment queue that records calls and only delivers what a test tells it to."""

    def __init__(self, payments_enabled: bool = True):
        super().__init__()
        self.payments_enabled = payments_enabled
        self.payments: List[PaymentRequest] = []
        self.restore_requests: List[str] = []
        self.finished: List[str] = []

    def can_make_payments(self) -> bool:
        return self.payments_enabled

    def add_payment(self, request: PaymentRequest) -> None:
        self.payments.append(request)

    def restore_completed_transactions(self, application_username: str = "") -> None:
        self.restore_requests.append(application_username)

    def finish_transaction(self, transaction_id: str) -> None:
        self.finished.append(transaction_id)

    def deliver(self, *transactions: PaymentTransaction) -> None:
        self._notify_updated(transactions)

    def complete_restore(self) -> None:
        self._notify_restore_completed()

    def fail_restore(self, error: Any) -> None:
        self._notify_restore_failed(error)


def make_transaction(
    product_id: str,
    state: TransactionState,
    transaction_id: Optional[str] = "1000000001",
    **kwargs: Any,
) -> PaymentTransaction:
    """Build a queue update with sensible defaults."""
    kwargs.setdefault("transaction_date", datetime(2024, 1, 1, tzinfo=timezone.utc))
    return PaymentTransaction(
        transaction_id=transaction_id,
        product_id=product_id,
        state=state,
        **kwargs,
    )


@pytest.fixture
def catalog() -> List[Product]:
    """Return the products known to the simulated store."""
    return [
        Product(
            product_id="com.example.pro",
            localized_title="Pro",
            price=Decimal("4.99"),
        ),
        Product(
            product_id="com.example.coins",
            localized_title="100 Coins",
            price=Decimal("0.99"),
        ),
        Product(
            product_id="com.example.monthly",
            localized_title="Monthly",
            price=Decimal("2.99"),
        ),
    ]


@pytest.fixture
def products_info(catalog):
    return SimulatorProductsInfo(catalog)


@pytest.fixture
def recording_queue():
    return RecordingPaymentQueue()


@pytest.fixture
def simulator_queue():
    return SimulatorPaymentQueue()


@pytest.fixture
def store(simulator_queue, products_info):
    """Create a store over the simulator connectors."""
    with Store(simulator_queue, products_info) as s:
        yield s


@pytest.fixture
def purchase_date() -> datetime:
    return datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def ms(value: datetime) -> str:
    """Millisecond epoch string, as verifyReceipt returns it."""
    return str(int(value.timestamp() * 1000))


@pytest.fixture
def raw_receipt(purchase_date) -> Dict[str, Any]:
    """Validated App Store receipt JSON with a non-consumable and two renewals."""
    first = purchase_date
    renewal = purchase_date + timedelta(days=30)
    return {
        "status": 0,
        "environment": "Sandbox",
        "receipt": {
            "bundle_id": "com.example.app",
            "request_date_ms": ms(purchase_date + timedelta(days=45)),
            "in_app": [
                {
                    "quantity": "1",
                    "product_id": "com.example.pro",
                    "transaction_id": "1000000001",
                    "original_transaction_id": "1000000001",
                    "purchase_date": "2024-01-01 12:00:00 Etc/GMT",
                    "purchase_date_ms": ms(first),
                    "is_trial_period": "false",
                },
            ],
        },
        "latest_receipt_info": [
            {
                "quantity": "1",
                "product_id": "com.example.pro",
                "transaction_id": "1000000001",
                "original_transaction_id": "1000000001",
                "purchase_date_ms": ms(first),
                "is_trial_period": "false",
            },
            {
                "quantity": "1",
                "product_id": "com.example.monthly",
                "transaction_id": "1000000002",
                "original_transaction_id": "1000000002",
                "purchase_date_ms": ms(first),
                "expires_date_ms": ms(first + timedelta(days=30)),
                "is_trial_period": "true",
            },
            {
                "quantity": "1",
                "product_id": "com.example.monthly",
                "transaction_id": "1000000003",
                "original_transaction_id": "1000000002",
                "purchase_date_ms": ms(renewal),
                "expires_date_ms": ms(renewal + timedelta(days=30)),
                "is_trial_period": "false",
                "is_in_intro_offer_period": "false",
            },
        ],
    }
