import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import schemas, models
from ..core.billing import BillingCycle
from ..deps import get_billing, get_current_user, get_db, require_roles
from ..repository import TransactionRepository

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/", response_model=List[schemas.TransactionOut])
def list_transactions(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    user_id: Optional[int] = None,
    status: Optional[str] = None,
):
    """
    List charges and invoices, newest first.

    Admins see everyone's transactions and may filter by member; other
    users only see their own.
    """
    repo = TransactionRepository(db)
    if current_user.role != models.ROLE_ADMIN:
        user_id = current_user.id
    return repo.list(user_id=user_id, status=status)


@router.post("/", response_model=schemas.TransactionOut)
def create_transaction(
    transaction_in: schemas.TransactionCreate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Record a manual charge for a member. *(Admin-only)*

    Raises
    ------
    HTTPException
        - 404 if the member does not exist.
    """
    user = db.query(models.User).filter(models.User.id == transaction_in.user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    repo = TransactionRepository(db)
    transaction_id = repo.create(id=uuid.uuid4().hex, **transaction_in.model_dump())
    return repo.get(transaction_id)


@router.post("/{transaction_id}/pay", response_model=schemas.TransactionOut)
def mark_transaction_paid(
    transaction_id: str,
    db: Session = Depends(get_db),
    billing: BillingCycle = Depends(get_billing),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Settle a transaction by hand. *(Admin-only)*

    Same effect as an approved payment notification: the transaction is
    paid and its owner becomes active again.
    """
    if TransactionRepository(db).get(transaction_id) is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return billing.confirm_payment(transaction_id, approved=True)
