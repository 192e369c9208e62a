"""Models for parsed receipts and receipt verification results."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Receipt fields that App Store JSON carries both as a formatted string and
# as a ``<name>_ms`` millisecond epoch value.
_DATE_FIELDS = (
    "purchase_date",
    "original_purchase_date",
    "expires_date",
    "cancellation_date",
)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_receipt_date(value: Any) -> Optional[datetime]:
    """Parse a receipt date in any of the shapes validators return.

    Accepts datetimes, millisecond epoch integers or digit strings, and
    ISO-8601 strings including App Store's ``"2020-01-01 10:00:00 Etc/GMT"``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
        for suffix in (" Etc/GMT", " GMT", " UTC"):
            if text.endswith(suffix):
                text = text[: -len(suffix)]
                break
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError as e:
            raise ValueError(f"Unrecognised receipt date: {value!r}") from e
    raise ValueError(f"Unsupported receipt date type: {type(value).__name__}")


class ReceiptItem(BaseModel):
    """A single purchase record inside a receipt."""
    model_config = ConfigDict(extra="ignore")

    product_id: str
    transaction_id: str
    original_transaction_id: Optional[str] = None
    quantity: int = 1
    purchase_date: datetime
    original_purchase_date: Optional[datetime] = None
    expires_date: Optional[datetime] = None
    cancellation_date: Optional[datetime] = None
    is_trial_period: bool = False
    is_in_intro_offer_period: bool = False
    web_order_line_item_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _prefer_millisecond_fields(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        for name in _DATE_FIELDS:
            ms_value = data.pop(f"{name}_ms", None)
            if ms_value not in (None, ""):
                data[name] = ms_value
        return data

    @field_validator(*_DATE_FIELDS, mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[datetime]:
        return parse_receipt_date(value)

    @field_validator(
        "product_id",
        "transaction_id",
        "original_transaction_id",
        "web_order_line_item_id",
        mode="before",
    )
    @classmethod
    def _ids_as_strings(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class ReceiptInfo(BaseModel):
    """A validated receipt: its purchase records plus the full raw mapping."""
    status: int = 0
    bundle_id: Optional[str] = None
    environment: Optional[str] = None
    request_date: Optional[datetime] = None
    in_app: List[ReceiptItem] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_raw(cls, data: Mapping[str, Any]) -> "ReceiptInfo":
        """Build from a validator response.

        ``latest_receipt_info`` is used when present since it includes
        subscription renewals; otherwise ``receipt.in_app`` and then a
        top-level ``in_app`` list.
        """
        receipt = data.get("receipt") or {}
        records = (
            data.get("latest_receipt_info")
            or receipt.get("in_app")
            or data.get("in_app")
            or []
        )
        if isinstance(records, Mapping):
            records = [records]
        request_date = receipt.get("request_date_ms") or receipt.get("request_date")
        return cls(
            status=int(data.get("status", 0)),
            bundle_id=receipt.get("bundle_id") or data.get("bundle_id"),
            environment=data.get("environment"),
            request_date=parse_receipt_date(request_date),
            in_app=[ReceiptItem.model_validate(record) for record in records],
            raw=dict(data),
        )

    def items_for(self, product_id: str) -> List[ReceiptItem]:
        """Return the records for ``product_id`` in receipt order."""
        return [item for item in self.in_app if item.product_id == product_id]


class NotPurchased(BaseModel):
    status: Literal["not_purchased"] = "not_purchased"


class Purchased(BaseModel):
    status: Literal["purchased"] = "purchased"
    item: ReceiptItem


class SubscriptionPurchased(BaseModel):
    """Subscription is active until ``expiry_date``."""
    status: Literal["purchased"] = "purchased"
    expiry_date: datetime
    items: List[ReceiptItem] = Field(default_factory=list)


class SubscriptionExpired(BaseModel):
    status: Literal["expired"] = "expired"
    expiry_date: datetime
    items: List[ReceiptItem] = Field(default_factory=list)


VerifyPurchaseResult = Union[NotPurchased, Purchased]
VerifySubscriptionResult = Union[NotPurchased, SubscriptionPurchased, SubscriptionExpired]


class AutoRenewable(BaseModel):
    kind: Literal["auto_renewable"] = "auto_renewable"


class NonRenewing(BaseModel):
    """Subscription valid for a fixed duration after each purchase."""
    kind: Literal["non_renewing"] = "non_renewing"
    valid_duration: timedelta

    @field_validator("valid_duration")
    @classmethod
    def _positive_duration(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("valid_duration must be positive")
        return value


SubscriptionType = Union[AutoRenewable, NonRenewing]
