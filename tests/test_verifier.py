"""Tests for purchase and subscription verification."""

import random
import pytest
from datetime import datetime, timedelta, timezone

from purchases_sdk.receipt import (
    AutoRenewable,
    NonRenewing,
    NotPurchased,
    Purchased,
    PurchaseVerifier,
    ReceiptInfo,
    ReceiptItem,
    SubscriptionExpired,
    SubscriptionPurchased,
)


def item(product_id, transaction_id, purchase_date, **kwargs):
    return ReceiptItem(
        product_id=product_id,
        transaction_id=transaction_id,
        purchase_date=purchase_date,
        **kwargs,
    )


@pytest.fixture
def verifier():
    return PurchaseVerifier()


@pytest.fixture
def t0():
    return datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


class TestVerifyPurchase:
    """Tests for verify_purchase."""

    def test_purchased_when_product_in_receipt(self, verifier, raw_receipt):
        receipt = ReceiptInfo.from_raw(raw_receipt)
        result = verifier.verify_purchase("com.example.pro", receipt)

        assert isinstance(result, Purchased)
        assert result.item.transaction_id == "1000000001"

    def test_not_purchased_when_product_missing(self, verifier, raw_receipt):
        receipt = ReceiptInfo.from_raw(raw_receipt)
        result = verifier.verify_purchase("com.example.unknown", receipt)

        assert isinstance(result, NotPurchased)

    def test_empty_receipt(self, verifier):
        assert isinstance(verifier.verify_purchase("com.example.pro", ReceiptInfo()), NotPurchased)

    def test_purchased_iff_some_record_matches(self, verifier, t0):
        rng = random.Random(7)
        products = ["a", "b", "c", "d"]
        for _ in range(50):
            records = [
                item(rng.choice(products), str(n), t0 + timedelta(minutes=n))
                for n in range(rng.randint(0, 5))
            ]
            receipt = ReceiptInfo(in_app=records)
            for product_id in products:
                result = verifier.verify_purchase(product_id, receipt)
                owned = any(r.product_id == product_id for r in records)
                assert isinstance(result, Purchased) == owned


class TestVerifyNonRenewing:
    """Tests for non-renewing subscriptions."""

    def test_active_one_second_before_expiry(self, verifier, t0):
        duration = timedelta(days=30)
        receipt = ReceiptInfo(in_app=[item("season", "1", t0)])

        result = verifier.verify_subscription(
            NonRenewing(valid_duration=duration),
            "season",
            receipt,
            reference_date=t0 + duration - timedelta(seconds=1),
        )

        assert isinstance(result, SubscriptionPurchased)
        assert result.expiry_date == t0 + duration

    def test_expired_one_second_after_expiry(self, verifier, t0):
        duration = timedelta(days=30)
        receipt = ReceiptInfo(in_app=[item("season", "1", t0)])

        result = verifier.verify_subscription(
            NonRenewing(valid_duration=duration),
            "season",
            receipt,
            reference_date=t0 + duration + timedelta(seconds=1),
        )

        assert isinstance(result, SubscriptionExpired)
        assert result.expiry_date == t0 + duration

    def test_active_exactly_at_expiry(self, verifier, t0):
        duration = timedelta(hours=1)
        receipt = ReceiptInfo(in_app=[item("season", "1", t0)])

        result = verifier.verify_subscription(
            NonRenewing(valid_duration=duration), "season", receipt, reference_date=t0 + duration
        )

        assert isinstance(result, SubscriptionPurchased)

    def test_latest_purchase_extends_period(self, verifier, t0):
        duration = timedelta(days=30)
        receipt = ReceiptInfo(in_app=[
            item("season", "1", t0),
            item("season", "2", t0 + timedelta(days=40)),
        ])

        result = verifier.verify_subscription(
            NonRenewing(valid_duration=duration), "season", receipt,
            reference_date=t0 + timedelta(days=50),
        )

        assert isinstance(result, SubscriptionPurchased)
        assert result.expiry_date == t0 + timedelta(days=70)
        assert [i.transaction_id for i in result.items] == ["2", "1"]

    def test_not_purchased(self, verifier, t0):
        receipt = ReceiptInfo(in_app=[item("other", "1", t0)])
        result = verifier.verify_subscription(
            NonRenewing(valid_duration=timedelta(days=1)), "season", receipt, reference_date=t0
        )
        assert isinstance(result, NotPurchased)

    def test_duration_must_be_positive(self):
        with pytest.raises(ValueError):
            NonRenewing(valid_duration=timedelta(0))


class TestVerifyAutoRenewable:
    """Tests for auto-renewable subscriptions."""

    def test_active_renewal_from_receipt(self, verifier, raw_receipt, purchase_date):
        receipt = ReceiptInfo.from_raw(raw_receipt)

        result = verifier.verify_subscription(
            AutoRenewable(), "com.example.monthly", receipt,
            reference_date=purchase_date + timedelta(days=45),
        )

        assert isinstance(result, SubscriptionPurchased)
        assert result.expiry_date == purchase_date + timedelta(days=60)
        assert result.items[0].transaction_id == "1000000003"

    def test_expired_after_last_period(self, verifier, raw_receipt, purchase_date):
        receipt = ReceiptInfo.from_raw(raw_receipt)

        result = verifier.verify_subscription(
            AutoRenewable(), "com.example.monthly", receipt,
            reference_date=purchase_date + timedelta(days=61),
        )

        assert isinstance(result, SubscriptionExpired)
        assert result.expiry_date == purchase_date + timedelta(days=60)

    def test_most_recent_record_wins_regardless_of_order(self, verifier, t0):
        records = [
            item("monthly", str(n), t0 + timedelta(days=30 * n), expires_date=t0 + timedelta(days=30 * (n + 1)))
            for n in range(6)
        ]
        # The latest record is authoritative even though an older one would still be active.
        records[2] = item("monthly", "2", t0 + timedelta(days=60), expires_date=t0 + timedelta(days=400))
        reference = t0 + timedelta(days=200)
        rng = random.Random(3)

        for _ in range(10):
            shuffled = records[:]
            rng.shuffle(shuffled)
            result = verifier.verify_subscription(
                AutoRenewable(), "monthly", ReceiptInfo(in_app=shuffled), reference_date=reference
            )
            assert isinstance(result, SubscriptionExpired)
            assert result.expiry_date == t0 + timedelta(days=180)
            assert result.items[0].transaction_id == "5"

    def test_identical_purchase_dates_tie_break_on_transaction_id(self, verifier, t0):
        records = [
            item("monthly", "9", t0, expires_date=t0 + timedelta(days=1)),
            item("monthly", "10", t0, expires_date=t0 + timedelta(days=30)),
        ]
        for ordering in (records, list(reversed(records))):
            result = verifier.verify_subscription(
                AutoRenewable(), "monthly", ReceiptInfo(in_app=ordering),
                reference_date=t0 + timedelta(days=2),
            )
            # "10" > "9" numerically, so the 30 day record is authoritative.
            assert isinstance(result, SubscriptionPurchased)
            assert result.items[0].transaction_id == "10"

    def test_cancelled_subscription_is_expired(self, verifier, t0):
        cancelled_at = t0 + timedelta(days=5)
        receipt = ReceiptInfo(in_app=[
            item("monthly", "1", t0, expires_date=t0 + timedelta(days=30), cancellation_date=cancelled_at),
        ])

        result = verifier.verify_subscription(
            AutoRenewable(), "monthly", receipt, reference_date=t0 + timedelta(days=10)
        )

        assert isinstance(result, SubscriptionExpired)
        assert result.expiry_date == cancelled_at

    def test_cancelled_at_reference_date_is_expired(self, verifier, t0):
        cancelled_at = t0 + timedelta(days=5)
        receipt = ReceiptInfo(in_app=[
            item("monthly", "1", t0, expires_date=t0 + timedelta(days=30), cancellation_date=cancelled_at),
        ])

        result = verifier.verify_subscription(AutoRenewable(), "monthly", receipt, reference_date=cancelled_at)

        assert isinstance(result, SubscriptionExpired)
        assert result.expiry_date == cancelled_at

    def test_future_cancellation_is_ignored(self, verifier, t0):
        receipt = ReceiptInfo(in_app=[
            item("monthly", "1", t0, expires_date=t0 + timedelta(days=30),
                 cancellation_date=t0 + timedelta(days=20)),
        ])

        result = verifier.verify_subscription(
            AutoRenewable(), "monthly", receipt, reference_date=t0 + timedelta(days=10)
        )

        assert isinstance(result, SubscriptionPurchased)
        assert result.expiry_date == t0 + timedelta(days=30)

    def test_records_without_expiry_are_not_subscriptions(self, verifier, t0):
        receipt = ReceiptInfo(in_app=[item("monthly", "1", t0)])
        result = verifier.verify_subscription(AutoRenewable(), "monthly", receipt, reference_date=t0)
        assert isinstance(result, NotPurchased)

    def test_naive_reference_date_is_utc(self, verifier, t0):
        receipt = ReceiptInfo(in_app=[item("monthly", "1", t0, expires_date=t0 + timedelta(hours=1))])
        naive = (t0 + timedelta(minutes=30)).replace(tzinfo=None)

        result = verifier.verify_subscription(AutoRenewable(), "monthly", receipt, reference_date=naive)

        assert isinstance(result, SubscriptionPurchased)

    def test_default_reference_date_is_now(self, verifier):
        now = datetime.now(timezone.utc)
        receipt = ReceiptInfo(in_app=[
            item("monthly", "1", now - timedelta(days=1), expires_date=now + timedelta(days=29)),
        ])
        result = verifier.verify_subscription(AutoRenewable(), "monthly", receipt)
        assert isinstance(result, SubscriptionPurchased)
