from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from .. import schemas, models
from ..deps import get_db, require_roles

router = APIRouter(prefix="/plans", tags=["plans"])


def _get_plan_or_404(db: Session, plan_id: int) -> models.Plan:
    plan = db.query(models.Plan).filter(models.Plan.id == plan_id).first()
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return plan


@router.post("/", response_model=schemas.PlanOut)
def create_plan(
    plan_in: schemas.PlanCreate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Create a membership plan. *(Admin-only)*

    Quotas of ``0`` (or ``null``) mean the plan has no cap for that period.

    Raises
    ------
    HTTPException
        - 400 if a plan with the same name already exists.
    """
    if db.query(models.Plan).filter(models.Plan.name == plan_in.name).first():
        raise HTTPException(status_code=400, detail="Plan name already exists")
    plan = models.Plan(**plan_in.model_dump())
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


@router.get("/", response_model=List[schemas.PlanOut])
def list_plans(db: Session = Depends(get_db)):
    """List all plans, cheapest first."""
    return db.query(models.Plan).order_by(models.Plan.price, models.Plan.name).all()


@router.get("/{plan_id}", response_model=schemas.PlanOut)
def get_plan(plan_id: int, db: Session = Depends(get_db)):
    return _get_plan_or_404(db, plan_id)


@router.patch("/{plan_id}", response_model=schemas.PlanOut)
def update_plan(
    plan_id: int,
    plan_update: schemas.PlanUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Update a plan. *(Admin-only)*

    Members reference plans by id, so renaming a plan keeps everyone on it.
    """
    plan = _get_plan_or_404(db, plan_id)
    data = plan_update.model_dump(exclude_unset=True)

    if "name" in data:
        clash = db.query(models.Plan).filter(
            models.Plan.name == data["name"], models.Plan.id != plan_id
        ).first()
        if clash:
            raise HTTPException(status_code=400, detail="Plan name already exists")

    for field, value in data.items():
        setattr(plan, field, value)
    db.commit()
    db.refresh(plan)
    return plan


@router.delete("/{plan_id}")
def delete_plan(
    plan_id: int,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Delete a plan. *(Admin-only)*

    Raises
    ------
    HTTPException
        - 404 if the plan does not exist.
        - 400 if members are still on the plan.
    """
    plan = _get_plan_or_404(db, plan_id)
    if plan.members:
        raise HTTPException(status_code=400, detail="Plan still has members")
    db.delete(plan)
    db.commit()
    return {"detail": "Plan deleted"}
