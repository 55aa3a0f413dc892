"""Store and clock interfaces the billing handlers depend on."""
from datetime import date, datetime
from typing import List, Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now()


class FixedClock:
    """Clock pinned to one instant, for tests and replays."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


class BookingStore(Protocol):
    def get(self, booking_id: int):
        ...

    def list(
        self,
        room_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        organizer_id: Optional[int] = None,
    ) -> List:
        ...

    def create(self, booking, units) -> int:
        ...

    def update(self, booking_id: int, **fields):
        ...

    def delete(self, booking_id: int) -> None:
        ...


class MemberStore(Protocol):
    def get_user(self, user_id: int):
        ...

    def get_plan(self, plan_id: int):
        ...

    def list_active_non_visitor_users(self) -> List:
        ...

    def list_non_visitor_users(self) -> List:
        ...

    def set_user_status(self, user_id: int, status: str) -> None:
        ...


class TransactionStore(Protocol):
    def get(self, transaction_id: str):
        ...

    def upsert(self, transaction_id: str, **fields):
        ...

    def create(self, **fields) -> str:
        ...

    def list_pending_monthly_by_user(self, user_id: int) -> List:
        ...

    def mark_paid(self, transaction_id: str, paid_at: datetime, payment_gateway_id: Optional[str] = None):
        ...
