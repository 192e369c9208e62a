import os
import secrets
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .receipt import AutoRenewable, NonRenewing, PurchaseVerifier, ReceiptInfo

logger = logging.getLogger(__name__)

RATE_LIMIT = os.getenv("PURCHASES_RATE_LIMIT", "60/minute")

security = HTTPBearer()
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title="Purchases SDK - Receipt Verification API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

verifier = PurchaseVerifier()


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Verify the API key from the Authorization header.

    Raises:
        HTTPException: If API key is invalid or not configured.
    """
    api_key = credentials.credentials
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(api_key, expected_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key


class VerifyPurchaseBody(BaseModel):
    product_id: str
    receipt: Dict[str, Any]  # validator response, e.g. verifyReceipt JSON


class VerifySubscriptionBody(BaseModel):
    product_id: str
    receipt: Dict[str, Any]
    type: Literal["auto_renewable", "non_renewing"] = "auto_renewable"
    valid_duration_seconds: Optional[int] = Field(default=None, gt=0)
    reference_date: Optional[datetime] = None


def _parse_receipt(raw: Dict[str, Any]) -> ReceiptInfo:
    try:
        return ReceiptInfo.from_raw(raw)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid receipt: {e}")


@app.get("/health")
async def health():
    return {"ok": True}


@app.post("/receipts/verify-purchase")
@limiter.limit(RATE_LIMIT)
async def verify_purchase(
    request: Request,
    body: VerifyPurchaseBody,
    api_key: str = Depends(verify_api_key),
):
    receipt = _parse_receipt(body.receipt)
    result = verifier.verify_purchase(body.product_id, receipt)
    return result.model_dump(mode="json")


@app.post("/receipts/verify-subscription")
@limiter.limit(RATE_LIMIT)
async def verify_subscription(
    request: Request,
    body: VerifySubscriptionBody,
    api_key: str = Depends(verify_api_key),
):
    if body.type == "non_renewing":
        if body.valid_duration_seconds is None:
            raise HTTPException(
                status_code=422,
                detail="valid_duration_seconds is required for non_renewing subscriptions",
            )
        subscription_type = NonRenewing(valid_duration=timedelta(seconds=body.valid_duration_seconds))
    else:
        subscription_type = AutoRenewable()

    receipt = _parse_receipt(body.receipt)
    result = verifier.verify_subscription(
        subscription_type, body.product_id, receipt, reference_date=body.reference_date
    )
    return result.model_dump(mode="json")
