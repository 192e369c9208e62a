"""App Store receipt validator backed by inapppy."""

import base64
import logging
import os
from typing import Optional

from inapppy import AppStoreValidator, InAppPyValidationError

from ..errors import StoreError
from ..receipt.models import ReceiptInfo
from .base import ReceiptValidatorBase, VerifyReceiptResult

logger = logging.getLogger(__name__)


class AppStoreReceiptValidator(ReceiptValidatorBase):
    """
    Validates receipts with Apple's verifyReceipt service. Requests sent to
    the wrong environment are retried against the other one by inapppy.
    """

    def __init__(
        self,
        bundle_id: Optional[str] = None,
        sandbox: Optional[bool] = None,
        shared_secret: Optional[str] = None,
        exclude_old_transactions: bool = False,
        http_timeout: Optional[int] = None,
    ):
        """Initialize the validator.

        Args:
            bundle_id: App bundle ID. Falls back to APPSTORE_BUNDLE_ID env var.
            sandbox: Use the sandbox endpoint. Falls back to APPSTORE_SANDBOX.
            shared_secret: Default shared secret. Falls back to APPSTORE_SHARED_SECRET.
            exclude_old_transactions: Only return the latest renewal of each subscription.
            http_timeout: Request timeout in seconds.

        Raises:
            ValueError: If no bundle ID is provided or found.
        """
        self.bundle_id = bundle_id or os.getenv("APPSTORE_BUNDLE_ID")
        if not self.bundle_id:
            raise ValueError(
                "APPSTORE_BUNDLE_ID must be provided either as argument or environment variable"
            )
        if sandbox is None:
            sandbox = os.getenv("APPSTORE_SANDBOX", "false").lower() in ("1", "true", "yes")
        self.sandbox = sandbox
        self.shared_secret = shared_secret or os.getenv("APPSTORE_SHARED_SECRET")
        self.exclude_old_transactions = exclude_old_transactions
        self._validator = AppStoreValidator(
            self.bundle_id,
            sandbox=self.sandbox,
            auto_retry_wrong_env_request=True,
            http_timeout=http_timeout,
        )

    def validate(self, receipt_data: bytes, shared_secret: Optional[str] = None) -> VerifyReceiptResult:
        """Validate raw receipt bytes.

        Args:
            receipt_data: Receipt file contents (not base64 encoded).
            shared_secret: Overrides the validator's shared secret.

        Returns:
            VerifyReceiptResult with the parsed receipt or a validator error.
        """
        encoded = base64.b64encode(receipt_data).decode("ascii")
        try:
            response = self._validator.validate(
                encoded,
                shared_secret=shared_secret or self.shared_secret,
                exclude_old_transactions=self.exclude_old_transactions,
            )
        except InAppPyValidationError as e:
            logger.error(f"Receipt validation failed: {e.raw_response}")
            cause = e.raw_response if e.raw_response else str(e)
            return VerifyReceiptResult(error=StoreError.validator_error(cause))

        try:
            receipt = ReceiptInfo.from_raw(response)
        except ValueError as e:
            logger.error(f"Could not parse validated receipt: {e}")
            return VerifyReceiptResult(error=StoreError.validator_error(e))

        logger.info(f"Receipt validated with {len(receipt.in_app)} purchase record(s)")
        return VerifyReceiptResult(receipt=receipt)
