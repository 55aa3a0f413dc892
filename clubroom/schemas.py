from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Literal
from datetime import date, datetime


Role = Literal["admin", "editor", "reviewer", "member", "guest"]
UserStatus = Literal["active", "pending", "blocked"]
RoomStatus = Literal["available", "maintenance", "occupied"]
TransactionStatus = Literal["pending", "paid", "overdue"]
TransactionType = Literal["monthly", "one_off", "initial"]

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ----- Plans -----
class PlanBase(BaseModel):
    name: str
    price: float = Field(0.0, ge=0)
    # 0 or null: unlimited
    weekly_quota: Optional[int] = Field(0, ge=0)
    monthly_quota: Optional[int] = Field(0, ge=0)
    late_night_quota: Optional[int] = Field(0, ge=0)
    invites: int = Field(0, ge=0)
    extra_invite_price: float = Field(0.0, ge=0)
    voting_weight: int = Field(1, ge=0)


class PlanCreate(PlanBase):
    pass


class PlanUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    weekly_quota: Optional[int] = Field(None, ge=0)
    monthly_quota: Optional[int] = Field(None, ge=0)
    late_night_quota: Optional[int] = Field(None, ge=0)
    invites: Optional[int] = Field(None, ge=0)
    extra_invite_price: Optional[float] = Field(None, ge=0)
    voting_weight: Optional[int] = Field(None, ge=0)


class PlanOut(PlanBase):
    id: int

    class Config:
        from_attributes = True


# ----- Users -----
class UserBase(BaseModel):
    name: str
    username: str
    email: EmailStr
    nickname: Optional[str] = None
    phone: Optional[str] = None


class UserCreate(UserBase):
    password: str


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None


class UserAdminUpdate(UserUpdate):
    role: Optional[Role] = None
    status: Optional[UserStatus] = None
    plan_id: Optional[int] = None


class UserPasswordReset(BaseModel):
    new_password: str


class UserOut(UserBase):
    id: int
    role: Role
    status: UserStatus
    plan_id: Optional[int] = None
    category: str
    created_at: datetime

    class Config:
        from_attributes = True


# ----- Rooms -----
class RoomBase(BaseModel):
    name: str
    description: Optional[str] = None
    capacity: int = Field(..., ge=1)
    status: RoomStatus = "available"


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)
    status: Optional[RoomStatus] = None


class RoomOut(RoomBase):
    id: int

    class Config:
        from_attributes = True


class SlotOut(BaseModel):
    start_time: str
    end_time: str
    end_date: date


class AvailabilityResponse(BaseModel):
    room_id: int
    date: date
    slots: List[SlotOut]


class EndTimesResponse(BaseModel):
    room_id: int
    date: date
    start_time: str
    end_times: List[str]


# ----- Bookings -----
class BookingCreate(BaseModel):
    room_id: int
    date: date
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    title: str = Field(..., min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    participant_ids: List[int] = []
    guest_ids: List[int] = []


class BookingUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    participant_ids: Optional[List[int]] = None
    guest_ids: Optional[List[int]] = None


class BookingOut(BaseModel):
    id: int
    room_id: int
    organizer_id: int
    date: date
    start_time: str
    end_time: str
    title: str
    description: Optional[str] = None
    participant_ids: List[int]
    guest_ids: List[int]
    status: str

    class Config:
        from_attributes = True


class SessionBlockOut(BaseModel):
    room_id: int
    organizer_id: int
    start: datetime
    end: datetime
    booking_ids: List[int]


# ----- Transactions -----
class TransactionCreate(BaseModel):
    user_id: int
    description: str
    amount: float = Field(..., ge=0)
    status: TransactionStatus = "pending"
    type: TransactionType = "one_off"
    due_date: Optional[date] = None


class TransactionOut(BaseModel):
    id: str
    user_id: int
    description: str
    amount: float
    status: TransactionStatus
    type: TransactionType
    created_at: datetime
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None
    payment_gateway_id: Optional[str] = None

    class Config:
        from_attributes = True


class PaymentNotification(BaseModel):
    transaction_id: str
    approved: bool
    payment_gateway_id: Optional[str] = None


class BatchReportOut(BaseModel):
    job: str
    succeeded: int
    skipped: int
    failed: int


# ----- Auth -----
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    username: Optional[str] = None
    role: Optional[str] = None
