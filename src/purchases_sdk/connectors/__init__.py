"""Payment queue, product catalogue and receipt validator connectors."""

from .base import (
    TransactionState,
    Product,
    PaymentRequest,
    PaymentTransaction,
    RetrieveResults,
    VerifyReceiptResult,
    TransactionObserver,
    PaymentQueueBase,
    ProductsInfoBase,
    ReceiptValidatorBase,
)
from .simulator_connector import (
    SimulatorPaymentQueue,
    SimulatorProductsInfo,
    SimulatorConfig,
    SimulatorScenario,
    SimulatedTransaction,
)
from .appstore_validator import AppStoreReceiptValidator

__all__ = [
    # Base classes and models
    "TransactionState",
    "Product",
    "PaymentRequest",
    "PaymentTransaction",
    "RetrieveResults",
    "VerifyReceiptResult",
    "TransactionObserver",
    "PaymentQueueBase",
    "ProductsInfoBase",
    "ReceiptValidatorBase",
    # Connectors
    "SimulatorPaymentQueue",
    "SimulatorProductsInfo",
    "SimulatorConfig",
    "SimulatorScenario",
    "SimulatedTransaction",
    "AppStoreReceiptValidator",
]
