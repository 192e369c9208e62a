"""Transactions module.

Tracks purchase and restore requests against the asynchronous updates a
payment queue delivers, and resolves each request exactly once.
"""

from .models import (
    Purchase,
    TransactionPurchased,
    TransactionFailed,
    TransactionRestored,
    TransactionResult,
    PaymentOptions,
    PurchaseSuccess,
    PurchaseError,
    PurchaseResult,
    RestoreFailure,
    RestoreResults,
    RequestKind,
    PendingPaymentRequest,
)
from .reconciler import TransactionReconciler

__all__ = [
    # Models
    "Purchase",
    "TransactionPurchased",
    "TransactionFailed",
    "TransactionRestored",
    "TransactionResult",
    "PaymentOptions",
    "PurchaseSuccess",
    "PurchaseError",
    "PurchaseResult",
    "RestoreFailure",
    "RestoreResults",
    "RequestKind",
    "PendingPaymentRequest",
    # Core Components
    "TransactionReconciler",
]
