"""Receipt module.

Parsed receipt models and the verification logic answering two questions:
- Does the receipt show a purchase of a product?
- Is a subscription product active at a given date?
"""

from .models import (
    ReceiptItem,
    ReceiptInfo,
    NotPurchased,
    Purchased,
    SubscriptionPurchased,
    SubscriptionExpired,
    VerifyPurchaseResult,
    VerifySubscriptionResult,
    AutoRenewable,
    NonRenewing,
    SubscriptionType,
    parse_receipt_date,
)
from .verifier import PurchaseVerifier

__all__ = [
    # Models
    "ReceiptItem",
    "ReceiptInfo",
    "NotPurchased",
    "Purchased",
    "SubscriptionPurchased",
    "SubscriptionExpired",
    "VerifyPurchaseResult",
    "VerifySubscriptionResult",
    "AutoRenewable",
    "NonRenewing",
    "SubscriptionType",
    "parse_receipt_date",
    # Verification
    "PurchaseVerifier",
]
