"""Tests for StoreError values."""

from purchases_sdk.errors import ErrorKind, StoreError


class TestStoreError:
    """Tests for StoreError constructors and formatting."""

    def test_constructors_set_kind(self):
        """Each constructor produces its own kind."""
        assert StoreError.payments_not_allowed().kind == ErrorKind.PAYMENTS_NOT_ALLOWED
        assert StoreError.invalid_product_id("p").kind == ErrorKind.INVALID_PRODUCT_ID
        assert StoreError.product_fetch_failed("x").kind == ErrorKind.PRODUCT_FETCH_FAILED
        assert StoreError.queue_error("x").kind == ErrorKind.QUEUE_ERROR
        assert StoreError.internal_inconsistency("x").kind == ErrorKind.INTERNAL_INCONSISTENCY
        assert StoreError.validator_error("x").kind == ErrorKind.VALIDATOR_ERROR

    def test_cause_is_stringified(self):
        """Exceptions and mappings are kept as text."""
        error = StoreError.queue_error(TimeoutError("took too long"), code="timeout")
        assert error.cause == "took too long"
        assert error.code == "timeout"
        assert StoreError.validator_error({"status": 21002}).cause == "{'status': 21002}"

    def test_str(self):
        error = StoreError.product_fetch_failed("offline")
        assert str(error) == "product_fetch_failed: Failed to retrieve product information (offline)"
        assert str(StoreError(kind=ErrorKind.QUEUE_ERROR)) == "queue_error"

    def test_is_internal(self):
        assert StoreError.internal_inconsistency("x").is_internal
        assert not StoreError.queue_error("x").is_internal

    def test_serializes_kind_as_value(self):
        dumped = StoreError.invalid_product_id("com.example.pro").model_dump(mode="json")
        assert dumped["kind"] == "invalid_product_id"
        assert dumped["message"] == "Invalid product id: com.example.pro"
