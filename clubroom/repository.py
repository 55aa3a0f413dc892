"""SQLAlchemy implementations of the booking, member and transaction stores."""
import logging
from datetime import datetime
from typing import List, Optional

from pybreaker import CircuitBreakerError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .circuit_breaker import store_circuit_breaker
from .core.exceptions import SlotConflict, UpstreamWriteFailure

logger = logging.getLogger(__name__)


class SqlStore:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self) -> None:
        try:
            store_circuit_breaker.call(self.db.commit)
        except CircuitBreakerError:
            self.db.rollback()
            raise UpstreamWriteFailure("Store temporarily unavailable (circuit open). Please try again later.")
        except IntegrityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Store write failed: %s", exc)
            raise UpstreamWriteFailure("Could not write to the store") from exc

    def _read(self, query):
        try:
            return query()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Store read failed: %s", exc)
            raise UpstreamWriteFailure("Could not read from the store") from exc


class BookingRepository(SqlStore):
    def get(self, booking_id: int) -> Optional[models.Booking]:
        return self._read(self.db.query(models.Booking).filter(models.Booking.id == booking_id).first)

    def list(self, room_id=None, date_from=None, date_to=None, organizer_id=None) -> List[models.Booking]:
        query = self.db.query(models.Booking)
        if room_id is not None:
            query = query.filter(models.Booking.room_id == room_id)
        if date_from is not None:
            query = query.filter(models.Booking.date >= date_from)
        if date_to is not None:
            query = query.filter(models.Booking.date <= date_to)
        if organizer_id is not None:
            query = query.filter(models.Booking.organizer_id == organizer_id)
        return self._read(query.order_by(models.Booking.date, models.Booking.start_time).all)

    def create(self, booking: models.Booking, units) -> int:
        """
        Insert a booking together with a claim on every unit it occupies.

        Raises
        ------
        SlotConflict
            If another booking claimed one of the units first.
        """
        booking.claims = [
            models.SlotClaim(room_id=booking.room_id, day=day, unit=unit) for day, unit in units
        ]
        self.db.add(booking)
        try:
            self._commit()
        except IntegrityError:
            raise SlotConflict("Room already booked for that time range")
        self.db.refresh(booking)
        return booking.id

    def update(self, booking_id: int, **fields) -> Optional[models.Booking]:
        booking = self.get(booking_id)
        if booking is None:
            return None
        for name, value in fields.items():
            setattr(booking, name, value)
        self._commit()
        self.db.refresh(booking)
        return booking

    def delete(self, booking_id: int) -> None:
        booking = self.get(booking_id)
        if booking is None:
            return
        self.db.delete(booking)
        self._commit()


class MemberRepository(SqlStore):
    def get_user(self, user_id: int) -> Optional[models.User]:
        return self._read(self.db.query(models.User).filter(models.User.id == user_id).first)

    def get_users(self, user_ids) -> List[models.User]:
        if not user_ids:
            return []
        return self.db.query(models.User).filter(models.User.id.in_(list(user_ids))).all()

    def get_plan(self, plan_id: int) -> Optional[models.Plan]:
        return self._read(self.db.query(models.Plan).filter(models.Plan.id == plan_id).first)

    def list_non_visitor_users(self) -> List[models.User]:
        return self._read(
            self.db.query(models.User)
            .filter(models.User.plan_id.isnot(None))
            .order_by(models.User.id)
            .all
        )

    def list_active_non_visitor_users(self) -> List[models.User]:
        return self._read(
            self.db.query(models.User)
            .filter(models.User.plan_id.isnot(None), models.User.status == models.USER_ACTIVE)
            .order_by(models.User.id)
            .all
        )

    def set_user_status(self, user_id: int, status: str) -> None:
        # Single-column UPDATE so concurrent jobs never overwrite other fields
        self.db.query(models.User).filter(models.User.id == user_id).update(
            {models.User.status: status}, synchronize_session="fetch"
        )
        self._commit()


class TransactionRepository(SqlStore):
    def get(self, transaction_id: str) -> Optional[models.Transaction]:
        query = self.db.query(models.Transaction).filter(models.Transaction.id == transaction_id)
        return self._read(query.first)

    def list(self, user_id=None, status=None) -> List[models.Transaction]:
        query = self.db.query(models.Transaction)
        if user_id is not None:
            query = query.filter(models.Transaction.user_id == user_id)
        if status is not None:
            query = query.filter(models.Transaction.status == status)
        return query.order_by(models.Transaction.created_at.desc()).all()

    def upsert(self, transaction_id: str, **fields) -> models.Transaction:
        transaction = self.get(transaction_id)
        if transaction is None:
            transaction = models.Transaction(id=transaction_id, **fields)
            self.db.add(transaction)
        else:
            for name, value in fields.items():
                setattr(transaction, name, value)
        self._commit()
        self.db.refresh(transaction)
        return transaction

    def create(self, **fields) -> str:
        transaction = models.Transaction(**fields)
        self.db.add(transaction)
        self._commit()
        return transaction.id

    def list_pending_monthly_by_user(self, user_id: int) -> List[models.Transaction]:
        return self._read(
            self.db.query(models.Transaction)
            .filter(
                models.Transaction.user_id == user_id,
                models.Transaction.type == models.TX_MONTHLY,
                models.Transaction.status == models.TX_PENDING,
            )
            .all
        )

    def mark_paid(self, transaction_id: str, paid_at: datetime, payment_gateway_id=None) -> Optional[models.Transaction]:
        transaction = self.get(transaction_id)
        if transaction is None:
            return None
        transaction.status = models.TX_PAID
        transaction.paid_at = paid_at
        if payment_gateway_id:
            transaction.payment_gateway_id = payment_gateway_id
        self._commit()
        self.db.refresh(transaction)
        return transaction
