import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session
from typing import Optional

from .. import schemas
from ..config import WEBHOOK_SECRET
from ..core.billing import BillingCycle
from ..deps import get_billing, get_db
from ..repository import TransactionRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def get_webhook_secret() -> str:
    return WEBHOOK_SECRET


@router.post("/webhook", response_model=schemas.TransactionOut)
def payment_webhook(
    notification: schemas.PaymentNotification,
    db: Session = Depends(get_db),
    billing: BillingCycle = Depends(get_billing),
    secret: str = Depends(get_webhook_secret),
    x_webhook_secret: Optional[str] = Header(None),
):
    """
    Payment gateway callback.

    An approved notification settles the transaction and reactivates the
    member. Repeated notifications are harmless.

    Raises
    ------
    HTTPException
        - 401 if a webhook secret is configured and the header does not match.
        - 404 if the transaction does not exist.
    """
    if secret and x_webhook_secret != secret:
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    if TransactionRepository(db).get(notification.transaction_id) is None:
        raise HTTPException(status_code=404, detail="Transaction not found")

    logger.info(
        "Payment notification for %s (approved=%s)",
        notification.transaction_id, notification.approved,
    )
    return billing.confirm_payment(
        notification.transaction_id,
        notification.approved,
        payment_gateway_id=notification.payment_gateway_id,
    )
