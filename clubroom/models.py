from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base

# Roles
ROLE_ADMIN = "admin"
ROLE_EDITOR = "editor"
ROLE_REVIEWER = "reviewer"
ROLE_MEMBER = "member"
ROLE_GUEST = "guest"
STAFF_ROLES = (ROLE_ADMIN, ROLE_EDITOR, ROLE_REVIEWER)

# Member status
USER_ACTIVE = "active"
USER_PENDING = "pending"
USER_BLOCKED = "blocked"

# Category shown for members without a plan
VISITOR_CATEGORY = "Visitor"

ROOM_AVAILABLE = "available"
ROOM_MAINTENANCE = "maintenance"
ROOM_OCCUPIED = "occupied"

BOOKING_CONFIRMED = "confirmed"
BOOKING_PENDING = "pending"
BOOKING_CANCELLED = "cancelled"

TX_PENDING = "pending"
TX_PAID = "paid"
TX_OVERDUE = "overdue"

TX_MONTHLY = "monthly"
TX_ONE_OFF = "one_off"
TX_INITIAL = "initial"


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    # 0 or NULL means unlimited
    weekly_quota = Column(Integer, nullable=True, default=0)
    monthly_quota = Column(Integer, nullable=True, default=0)
    late_night_quota = Column(Integer, nullable=True, default=0)
    invites = Column(Integer, nullable=False, default=0)
    extra_invite_price = Column(Float, nullable=False, default=0.0)
    voting_weight = Column(Integer, nullable=False, default=1)

    members = relationship("User", back_populates="plan")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False, default=ROLE_MEMBER)
    status = Column(String, nullable=False, default=USER_PENDING)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    nickname = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    plan = relationship("Plan", back_populates="members")
    organized_bookings = relationship("Booking", back_populates="organizer")
    transactions = relationship("Transaction", back_populates="user")

    @property
    def category(self) -> str:
        return self.plan.name if self.plan is not None else VISITOR_CATEGORY

    @property
    def is_visitor(self) -> bool:
        return self.plan_id is None

    @property
    def can_organize(self) -> bool:
        """Only active members with a plan may organize bookings or be billed."""
        return self.status == USER_ACTIVE and not self.is_visitor


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)
    capacity = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=ROOM_AVAILABLE)

    bookings = relationship("Booking", back_populates="room")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # For late-night sessions this is the date the session starts on
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # Ordered lists of user ids
    participant_ids = Column(JSON, nullable=False, default=list)
    guest_ids = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False, default=BOOKING_CONFIRMED)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    room = relationship("Room", back_populates="bookings")
    organizer = relationship("User", back_populates="organized_bookings")
    claims = relationship("SlotClaim", cascade="all, delete-orphan", back_populates="booking")


class SlotClaim(Base):
    """One occupied half hour of a room; the unique key rejects double bookings."""

    __tablename__ = "slot_claims"
    __table_args__ = (UniqueConstraint("room_id", "day", "unit", name="uq_room_day_unit"),)

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    room_id = Column(Integer, nullable=False)
    day = Column(Date, nullable=False)
    unit = Column(Integer, nullable=False)

    booking = relationship("Booking", back_populates="claims")


class Transaction(Base):
    __tablename__ = "transactions"

    # Opaque ids for invoices, "charge_<booking id>" for guest charges
    id = Column(String, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    description = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(String, nullable=False, default=TX_PENDING)
    type = Column(String, nullable=False, default=TX_ONE_OFF)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    due_date = Column(Date, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    payment_gateway_id = Column(String, nullable=True)

    user = relationship("User", back_populates="transactions")
