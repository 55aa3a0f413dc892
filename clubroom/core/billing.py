"""
Billing cycle: extra-guest charges, monthly invoices and overdue flagging.

The cycle renews on the 15th. Handlers here may be re-run freely: guest
charges are keyed by booking, invoices by member and month, and the batch
jobs process one member at a time so a failure never stops the rest of the
run. A guest charge lost after its booking was stored is picked up again by
``sweep_guest_charges``.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from ..models import (
    BOOKING_CANCELLED,
    TX_MONTHLY,
    TX_ONE_OFF,
    TX_PAID,
    TX_PENDING,
    USER_ACTIVE,
    USER_BLOCKED,
    USER_PENDING,
)
from .exceptions import PartialBatchFailure, ValidationError
from .ports import BookingStore, Clock, MemberStore, SystemClock, TransactionStore
from .quota import extra_guests_to_charge

logger = logging.getLogger(__name__)

CYCLE_RENEWAL_DAY = 15


def cycle_start(day: date) -> date:
    """First day of the billing cycle containing ``day``."""
    if day.day >= CYCLE_RENEWAL_DAY:
        return day.replace(day=CYCLE_RENEWAL_DAY)
    if day.month == 1:
        return date(day.year - 1, 12, CYCLE_RENEWAL_DAY)
    return date(day.year, day.month - 1, CYCLE_RENEWAL_DAY)


def charge_id(booking_id) -> str:
    return f"charge_{booking_id}"


def invoice_id(user_id, day: date) -> str:
    return f"invoice_{user_id}_{day:%Y%m}"


@dataclass
class BatchReport:
    job: str
    succeeded: int = 0
    skipped: int = 0
    failures: List[PartialBatchFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


class BillingCycle:
    def __init__(
        self,
        bookings: BookingStore,
        members: MemberStore,
        transactions: TransactionStore,
        clock: Optional[Clock] = None,
    ):
        self.bookings = bookings
        self.members = members
        self.transactions = transactions
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reactive: booking written
    # ------------------------------------------------------------------
    def on_booking_write(self, booking, previous_guests, plan, user):
        """
        React to a booking create or update.

        ``previous_guests`` is the guest list before the write (``None`` for a
        new booking). Returns the upserted charge, or ``None`` when nothing is
        owed. Deletes the booking when nobody is left in it.
        """
        guests = list(booking.guest_ids or [])
        participants = list(booking.participant_ids or [])

        if not participants:
            logger.info("Booking %s has no participants left, deleting it", booking.id)
            self.bookings.delete(booking.id)
            return None

        if previous_guests is not None and list(previous_guests) == guests:
            return None

        if plan is None or (plan.extra_invite_price or 0) <= 0:
            return None

        start = cycle_start(booking.date)
        in_cycle = [
            b for b in self.bookings.list(
                organizer_id=booking.organizer_id, date_from=start, date_to=booking.date
            )
            if b.id != booking.id
        ]
        chargeable = extra_guests_to_charge(plan, booking.organizer_id, start, in_cycle, len(guests))
        if chargeable <= 0:
            return None

        amount = round(chargeable * plan.extra_invite_price, 2)
        logger.info(
            "Charging user %s %.2f for %d extra guest(s) on booking %s",
            user.id, amount, chargeable, booking.id,
        )
        return self.transactions.upsert(
            charge_id(booking.id),
            user_id=user.id,
            description=f"Extra guests ({chargeable}) for booking #{booking.id} on {booking.date.isoformat()}",
            amount=amount,
            status=TX_PENDING,
            type=TX_ONE_OFF,
        )

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------
    def _fail(self, report: BatchReport, user_id, exc: Exception) -> None:
        logger.exception("%s failed for user %s", report.job, user_id)
        report.failures.append(PartialBatchFailure(user_id, exc))

    def generate_monthly_invoices(self, today: Optional[date] = None) -> BatchReport:
        """
        One Monthly invoice per active member with a plan, due on the 15th.

        Invoice ids are derived from member and month, so a rerun after a
        partial failure only fills in the members that were missed.
        """
        today = today or self.clock.now().date()
        due = today.replace(day=CYCLE_RENEWAL_DAY)
        report = BatchReport(job="monthly_invoices")

        for user in self.members.list_active_non_visitor_users():
            try:
                plan = self.members.get_plan(user.plan_id) if user.plan_id is not None else None
                invoice = invoice_id(user.id, today)
                if plan is None or self.transactions.get(invoice) is not None:
                    report.skipped += 1
                    continue
                self.transactions.upsert(
                    invoice,
                    user_id=user.id,
                    description=f"Monthly fee {today.strftime('%m/%Y')} ({plan.name})",
                    amount=plan.price,
                    status=TX_PENDING,
                    type=TX_MONTHLY,
                    due_date=due,
                )
            except Exception as exc:
                self._fail(report, user.id, exc)
                continue
            report.succeeded += 1

        logger.info(
            "Monthly invoices: %d created, %d skipped, %d failed",
            report.succeeded, report.skipped, report.failed,
        )
        return report

    def flag_overdue(self, today: Optional[date] = None) -> BatchReport:
        today = today or self.clock.now().date()
        report = BatchReport(job="flag_overdue")

        for user in self.members.list_non_visitor_users():
            try:
                if user.status in (USER_PENDING, USER_BLOCKED):
                    report.skipped += 1
                    continue
                pending = self.transactions.list_pending_monthly_by_user(user.id)
                if not pending:
                    report.skipped += 1
                    continue
                self.members.set_user_status(user.id, USER_PENDING)
            except Exception as exc:
                self._fail(report, user.id, exc)
                continue
            logger.info(
                "User %s flagged as pending: %d unpaid monthly invoice(s) on %s",
                user.id, len(pending), today.isoformat(),
            )
            report.succeeded += 1

        return report

    def sweep_guest_charges(self, today: Optional[date] = None) -> BatchReport:
        """
        Re-run the extra-guest charge for every booking of the current cycle.

        Covers charges lost when a booking was stored but its charge write
        failed. Paid charges are left alone; pending ones are recomputed
        under the same id, so running the sweep twice changes nothing.
        """
        today = today or self.clock.now().date()
        report = BatchReport(job="guest_charges")

        for booking in self.bookings.list(date_from=cycle_start(today)):
            if not booking.guest_ids or booking.status == BOOKING_CANCELLED:
                report.skipped += 1
                continue
            try:
                existing = self.transactions.get(charge_id(booking.id))
                if existing is not None and existing.status == TX_PAID:
                    report.skipped += 1
                    continue
                organizer = self.members.get_user(booking.organizer_id)
                plan = self.members.get_plan(organizer.plan_id) if organizer.plan_id is not None else None
                charge = self.on_booking_write(booking, None, plan, organizer)
            except Exception as exc:
                self._fail(report, booking.organizer_id, exc)
                continue
            if charge is None:
                report.skipped += 1
            else:
                report.succeeded += 1

        logger.info(
            "Guest charge sweep: %d charged, %d skipped, %d failed",
            report.succeeded, report.skipped, report.failed,
        )
        return report

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------
    def confirm_payment(self, transaction_id: str, approved: bool, payment_gateway_id: Optional[str] = None):
        """Settle a transaction after an approved payment and reactivate its owner."""
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise ValidationError(f"Unknown transaction {transaction_id}")
        if not approved:
            logger.info("Payment for transaction %s was not approved", transaction_id)
            return transaction
        if transaction.status == TX_PAID:
            return transaction

        transaction = self.transactions.mark_paid(transaction_id, self.clock.now(), payment_gateway_id)
        self.members.set_user_status(transaction.user_id, USER_ACTIVE)
        logger.info("Transaction %s paid; user %s is active", transaction_id, transaction.user_id)
        return transaction
