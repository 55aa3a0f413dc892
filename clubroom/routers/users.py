from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import schemas, models
from ..deps import (
    get_db,
    get_password_hash,
    authenticate_user,
    create_access_token,
    get_current_user,
    require_roles,
)

router = APIRouter(prefix="/users", tags=["users"])


def _get_user_or_404(db: Session, username: str) -> models.User:
    user = db.query(models.User).filter(models.User.username == username).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/register", response_model=schemas.UserOut)
def register_user(user_in: schemas.UserCreate, db: Session = Depends(get_db)):
    """
    Register a new member account.

    New accounts start as ``pending`` members without a plan (category
    ``Visitor``); an administrator activates them and assigns a plan once
    the first payment is settled.

    Raises
    ------
    HTTPException
        - 400 if the username or email already exists.
    """
    existing = db.query(models.User).filter(
        (models.User.username == user_in.username) | (models.User.email == user_in.email)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Username or email already exists")

    user = models.User(
        name=user_in.name,
        username=user_in.username,
        email=user_in.email,
        nickname=user_in.nickname,
        phone=user_in.phone,
        hashed_password=get_password_hash(user_in.password),
        role=models.ROLE_MEMBER,
        status=models.USER_PENDING,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.post("/login", response_model=schemas.Token, tags=["auth"], include_in_schema=False)
def login_for_access_token(
    username: str,
    password: str,
    db: Session = Depends(get_db),
):
    """
    Authenticate a user and return a JWT access token.

    Raises
    ------
    HTTPException
        - 401 if credentials are invalid.
        - 403 if the account is blocked.
    """
    user = authenticate_user(db, username, password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
        )
    if user.status == models.USER_BLOCKED:
        raise HTTPException(status_code=403, detail="Account is blocked")
    token = create_access_token({"sub": user.username, "role": user.role})
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me", response_model=schemas.UserOut)
def read_current_user(current_user: models.User = Depends(get_current_user)):
    """Get the currently authenticated user."""
    return current_user


@router.patch("/me", response_model=schemas.UserOut)
def update_current_user(
    user_update: schemas.UserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update the profile of the current user.

    Only profile fields (name, email, nickname, phone) can be changed here;
    role, status and plan are managed by administrators.
    """
    data = user_update.model_dump(exclude_unset=True)

    if "email" in data:
        taken = db.query(models.User).filter(
            models.User.email == data["email"], models.User.id != current_user.id
        ).first()
        if taken:
            raise HTTPException(status_code=400, detail="Email already in use")

    for field, value in data.items():
        setattr(current_user, field, value)

    db.commit()
    db.refresh(current_user)
    return current_user


@router.get("/", response_model=List[schemas.UserOut])
def list_users(
    db: Session = Depends(get_db),
    user_status: Optional[str] = None,
    _: models.User = Depends(require_roles(*models.STAFF_ROLES)),
):
    """
    List registered members. *(Staff only)*

    Parameters
    ----------
    user_status : str, optional
        Only return members in this status (``active``, ``pending``, ``blocked``).
    """
    query = db.query(models.User)
    if user_status is not None:
        query = query.filter(models.User.status == user_status)
    return query.order_by(models.User.name).all()


@router.get("/{username}", response_model=schemas.UserOut)
def get_user(
    username: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Get a member by username.

    Staff can read any profile; members can only read their own.
    """
    if current_user.role not in models.STAFF_ROLES and current_user.username != username:
        raise HTTPException(status_code=403, detail="Not allowed to view this user")
    return _get_user_or_404(db, username)


@router.patch("/{username}", response_model=schemas.UserOut)
def update_user(
    username: str,
    user_update: schemas.UserAdminUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Update any member's account. *(Admin-only)*

    Besides profile fields, administrators set the member's role, status and
    plan. Setting ``plan_id`` to ``null`` turns the member into a Visitor.

    Raises
    ------
    HTTPException
        - 404 if the user or the plan does not exist.
    """
    user = _get_user_or_404(db, username)
    data = user_update.model_dump(exclude_unset=True)

    if data.get("plan_id") is not None:
        plan = db.query(models.Plan).filter(models.Plan.id == data["plan_id"]).first()
        if not plan:
            raise HTTPException(status_code=404, detail="Plan not found")

    for field, value in data.items():
        setattr(user, field, value)

    db.commit()
    db.refresh(user)
    return user


@router.post("/{username}/reset-password")
def reset_user_password(
    username: str,
    payload: schemas.UserPasswordReset,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """Reset a member's password. *(Admin-only)*"""
    user = _get_user_or_404(db, username)
    user.hashed_password = get_password_hash(payload.new_password)
    db.commit()
    return {"detail": "Password reset successfully"}


@router.delete("/{username}")
def delete_user(
    username: str,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Delete a member. *(Admin-only)*

    Members that still organize bookings or own transactions cannot be
    deleted; block them instead.

    Raises
    ------
    HTTPException
        - 404 if the user does not exist.
        - 400 if bookings or transactions still reference the user.
    """
    user = _get_user_or_404(db, username)
    if user.organized_bookings or user.transactions:
        raise HTTPException(
            status_code=400,
            detail="User still has bookings or transactions; block the account instead",
        )
    db.delete(user)
    db.commit()
    return {"detail": "User deleted"}


@router.get("/{username}/bookings", response_model=List[schemas.BookingOut])
def get_user_bookings(
    username: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Bookings a member organizes or takes part in.

    Staff can inspect anyone; members only themselves.
    """
    if current_user.role not in models.STAFF_ROLES and current_user.username != username:
        raise HTTPException(status_code=403, detail="Not allowed to view these bookings")
    user = _get_user_or_404(db, username)
    bookings = db.query(models.Booking).order_by(models.Booking.date, models.Booking.start_time).all()
    return [
        b for b in bookings
        if b.organizer_id == user.id or user.id in (b.participant_ids or [])
    ]
