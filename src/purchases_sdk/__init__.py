# purchases_sdk package
__version__ = "0.1.0"

from .errors import ErrorKind, StoreError
from .config import StoreSettings
from .store import Store, set_default_store, get_default_store
from .transactions import (
    Purchase,
    PaymentOptions,
    PurchaseSuccess,
    PurchaseError,
    PurchaseResult,
    RestoreFailure,
    RestoreResults,
    TransactionReconciler,
)

# Receipt exports
from .receipt import (
    ReceiptInfo,
    ReceiptItem,
    PurchaseVerifier,
    NotPurchased,
    Purchased,
    SubscriptionPurchased,
    SubscriptionExpired,
    AutoRenewable,
    NonRenewing,
)
