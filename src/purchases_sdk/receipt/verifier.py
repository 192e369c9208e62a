"""Ownership and subscription decisions over parsed receipts."""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .models import (
    AutoRenewable,
    NonRenewing,
    NotPurchased,
    Purchased,
    ReceiptInfo,
    ReceiptItem,
    SubscriptionExpired,
    SubscriptionPurchased,
    SubscriptionType,
    VerifyPurchaseResult,
    VerifySubscriptionResult,
    ensure_utc,
)

logger = logging.getLogger(__name__)


class PurchaseVerifier:
    """Pure verification logic; holds no state and performs no I/O."""

    def verify_purchase(self, product_id: str, receipt: ReceiptInfo) -> VerifyPurchaseResult:
        """Check whether ``receipt`` contains any purchase of ``product_id``.

        Args:
            product_id: Product identifier to look for.
            receipt: Parsed receipt.

        Returns:
            Purchased with the first matching record, or NotPurchased.
        """
        for item in receipt.in_app:
            if item.product_id == product_id:
                return Purchased(item=item)
        return NotPurchased()

    def verify_subscription(
        self,
        subscription_type: SubscriptionType,
        product_id: str,
        receipt: ReceiptInfo,
        reference_date: Optional[datetime] = None,
    ) -> VerifySubscriptionResult:
        """Decide whether a subscription is active at ``reference_date``.

        Matching records are sorted most recent first and the first one is
        authoritative, which models renewal chains where the latest
        transaction carries the current period.

        Args:
            subscription_type: AutoRenewable or NonRenewing(valid_duration).
            product_id: Subscription product identifier.
            receipt: Parsed receipt.
            reference_date: Date to check against, defaults to now (UTC).

        Returns:
            NotPurchased, SubscriptionPurchased or SubscriptionExpired.
        """
        now = ensure_utc(reference_date) if reference_date else datetime.now(timezone.utc)

        items = receipt.items_for(product_id)
        if isinstance(subscription_type, AutoRenewable):
            # Records with no period at all cannot describe a subscription.
            items = [i for i in items if i.expires_date or i.cancellation_date]
        if not items:
            return NotPurchased()

        items = self.sort_most_recent_first(items)
        expiry = self._expiry_date(subscription_type, items[0], now)

        active = expiry >= now
        if isinstance(subscription_type, AutoRenewable) and _cancelled_by(items[0], now):
            active = False
        if active:
            return SubscriptionPurchased(expiry_date=expiry, items=items)
        return SubscriptionExpired(expiry_date=expiry, items=items)

    @staticmethod
    def sort_most_recent_first(items: List[ReceiptItem]) -> List[ReceiptItem]:
        """Sort by purchase date descending, ties broken by transaction id descending."""
        return sorted(items, key=_recency_key, reverse=True)

    def _expiry_date(
        self,
        subscription_type: SubscriptionType,
        item: ReceiptItem,
        now: datetime,
    ) -> datetime:
        if isinstance(subscription_type, NonRenewing):
            return item.purchase_date + subscription_type.valid_duration
        if isinstance(subscription_type, AutoRenewable):
            cancelled = item.cancellation_date
            if _cancelled_by(item, now):
                logger.debug(
                    f"Subscription {item.product_id} transaction {item.transaction_id} "
                    f"cancelled at {cancelled.isoformat()}"
                )
                if item.expires_date is None:
                    return cancelled
                return min(item.expires_date, cancelled)
            if item.expires_date is None:
                # Only a future cancellation date: nothing says when it ends.
                return cancelled
            return item.expires_date
        raise TypeError(f"Unknown subscription type: {subscription_type!r}")


def _recency_key(item: ReceiptItem) -> Tuple[datetime, Tuple[int, int, str]]:
    transaction_id = item.transaction_id
    if transaction_id.isdigit():
        return item.purchase_date, (1, int(transaction_id), "")
    return item.purchase_date, (0, 0, transaction_id)


def _cancelled_by(item: ReceiptItem, now: datetime) -> bool:
    return item.cancellation_date is not None and item.cancellation_date <= now
