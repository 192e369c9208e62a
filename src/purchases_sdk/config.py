"""Store configuration loaded from environment variables."""

import os
from typing import Optional

from pydantic import BaseModel, Field


class StoreSettings(BaseModel):
    """Settings for a Store instance."""
    receipt_path: Optional[str] = Field(
        default=None, description="Path of the local receipt file"
    )
    shared_secret: Optional[str] = Field(
        default=None, description="App shared secret for auto-renewable receipts"
    )
    max_workers: int = Field(
        default=4, ge=1, description="Threads used for product lookups and receipt validation"
    )

    @classmethod
    def from_env(cls) -> "StoreSettings":
        """Build settings from PURCHASES_* and APPSTORE_* environment variables."""
        return cls(
            receipt_path=os.getenv("PURCHASES_RECEIPT_PATH") or None,
            shared_secret=os.getenv("APPSTORE_SHARED_SECRET") or None,
            max_workers=int(os.getenv("PURCHASES_MAX_WORKERS", "4")),
        )
