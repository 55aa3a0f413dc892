"""
Tests for the billing cycle: guest charges, invoices, overdue flags, payments.
"""
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from clubroom import models
from clubroom.core.billing import BillingCycle, charge_id, cycle_start, invoice_id
from clubroom.core.exceptions import UpstreamWriteFailure, ValidationError
from clubroom.repository import BookingRepository, MemberRepository, TransactionRepository

from conftest import TOMORROW, _add_user


@pytest.fixture
def billing(db_session, clock):
    return BillingCycle(
        bookings=BookingRepository(db_session),
        members=MemberRepository(db_session),
        transactions=TransactionRepository(db_session),
        clock=clock,
    )


def _transactions(db_session, **filters):
    return db_session.query(models.Transaction).filter_by(**filters).all()


class TestCycleStart:
    @pytest.mark.parametrize(
        "day, expected",
        [
            (date(2026, 3, 10), date(2026, 2, 15)),
            (date(2026, 3, 15), date(2026, 3, 15)),
            (date(2026, 3, 31), date(2026, 3, 15)),
            (date(2026, 1, 3), date(2025, 12, 15)),
        ],
    )
    def test_cycle_renews_on_the_15th(self, day, expected):
        assert cycle_start(day) == expected


class TestChargeOnWrite:
    def test_extra_guests_are_charged(self, billing, db_session, book, sample_room, member, player_plan, visitor):
        book(sample_room, member, date(2026, 3, 2), "08:00", "12:30", guests=[visitor.id])
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30", guests=[visitor.id, visitor.id])

        charge = billing.on_booking_write(booking, None, player_plan, member)

        assert charge.id == charge_id(booking.id)
        assert charge.amount == 10.0
        assert charge.status == models.TX_PENDING
        assert charge.type == models.TX_ONE_OFF
        assert charge.user_id == member.id

    def test_rerun_keeps_a_single_charge(self, billing, db_session, book, sample_room, member, player_plan, visitor):
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30", guests=[visitor.id] * 3)

        billing.on_booking_write(booking, None, player_plan, member)
        billing.on_booking_write(booking, None, player_plan, member)

        charges = _transactions(db_session, id=charge_id(booking.id))
        assert len(charges) == 1
        assert charges[0].amount == 10.0

    def test_unchanged_guests_is_a_noop(self, billing, db_session, book, sample_room, member, player_plan, visitor):
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30", guests=[visitor.id] * 3)

        assert billing.on_booking_write(booking, list(booking.guest_ids), player_plan, member) is None
        assert _transactions(db_session) == []

    def test_within_allowance_is_not_charged(self, billing, db_session, book, sample_room, member, player_plan, visitor):
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30", guests=[visitor.id])
        assert billing.on_booking_write(booking, None, player_plan, member) is None
        assert _transactions(db_session) == []

    def test_free_guest_plan_is_not_charged(self, billing, db_session, book, sample_room, member, master_plan, visitor):
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30", guests=[visitor.id] * 6)
        assert billing.on_booking_write(booking, None, master_plan, member) is None

    def test_empty_booking_is_deleted(self, billing, db_session, book, sample_room, member, player_plan):
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30")
        booking.participant_ids = []
        db_session.commit()

        assert billing.on_booking_write(booking, [], player_plan, member) is None
        assert BookingRepository(db_session).get(booking.id) is None
        assert db_session.query(models.SlotClaim).count() == 0


class TestMonthlyInvoices:
    def test_one_invoice_per_active_member_with_plan(self, billing, db_session, player_plan, master_plan):
        _add_user(db_session, "ana", plan=player_plan)
        _add_user(db_session, "bruno", plan=player_plan)
        _add_user(db_session, "carla", plan=master_plan)
        _add_user(db_session, "davi")  # visitor
        _add_user(db_session, "eva", status=models.USER_BLOCKED, plan=player_plan)

        report = billing.generate_monthly_invoices(date(2026, 3, 1))

        invoices = _transactions(db_session, type=models.TX_MONTHLY)
        assert report.succeeded == 3
        assert report.failed == 0
        assert len(invoices) == 3
        assert {tx.due_date for tx in invoices} == {date(2026, 3, 15)}
        assert {tx.status for tx in invoices} == {models.TX_PENDING}
        assert sorted(tx.amount for tx in invoices) == [50.0, 50.0, 120.0]

    def test_defaults_to_clock_date(self, billing, db_session, member):
        billing.generate_monthly_invoices()
        invoice = _transactions(db_session, type=models.TX_MONTHLY)[0]
        assert invoice.due_date == date(2026, 3, 15)

    def test_failure_for_one_member_does_not_stop_the_batch(self, db_session, clock, player_plan):
        first = _add_user(db_session, "ana", plan=player_plan)
        _add_user(db_session, "bruno", plan=player_plan)
        _add_user(db_session, "carla", plan=player_plan)

        class FlakyTransactions(TransactionRepository):
            def upsert(self, transaction_id, **fields):
                if fields["user_id"] == first.id:
                    raise UpstreamWriteFailure("store down")
                return super().upsert(transaction_id, **fields)

        billing = BillingCycle(
            BookingRepository(db_session),
            MemberRepository(db_session),
            FlakyTransactions(db_session),
            clock,
        )
        report = billing.generate_monthly_invoices()

        assert report.succeeded == 2
        assert report.failed == 1
        assert report.failures[0].user_id == first.id
        assert len(_transactions(db_session, type=models.TX_MONTHLY)) == 2

    def test_rerun_only_fills_the_gaps(self, db_session, clock, player_plan):
        first = _add_user(db_session, "ana", plan=player_plan)
        second = _add_user(db_session, "bruno", plan=player_plan)

        class FlakyTransactions(TransactionRepository):
            def upsert(self, transaction_id, **fields):
                if fields["user_id"] == first.id:
                    raise UpstreamWriteFailure("store down")
                return super().upsert(transaction_id, **fields)

        BillingCycle(
            BookingRepository(db_session), MemberRepository(db_session), FlakyTransactions(db_session), clock,
        ).generate_monthly_invoices()
        report = BillingCycle(
            BookingRepository(db_session), MemberRepository(db_session), TransactionRepository(db_session), clock,
        ).generate_monthly_invoices()

        assert report.succeeded == 1
        assert report.skipped == 1
        invoices = _transactions(db_session, type=models.TX_MONTHLY)
        assert sorted(tx.id for tx in invoices) == [
            invoice_id(first.id, date(2026, 3, 10)),
            invoice_id(second.id, date(2026, 3, 10)),
        ]

    def test_paid_invoice_is_not_reset(self, billing, db_session, member):
        billing.generate_monthly_invoices()
        invoice = _transactions(db_session, type=models.TX_MONTHLY)[0]
        billing.confirm_payment(invoice.id, approved=True)

        billing.generate_monthly_invoices()

        db_session.refresh(invoice)
        assert invoice.status == models.TX_PAID
        assert len(_transactions(db_session, type=models.TX_MONTHLY)) == 1

    def test_plan_lookup_failure_is_isolated(self, db_session, clock, player_plan):
        _add_user(db_session, "ana", plan=player_plan)
        _add_user(db_session, "bruno", plan=player_plan)

        class BrokenMembers(MemberRepository):
            def get_plan(self, plan_id):
                raise OperationalError("SELECT plans", {}, Exception("db down"))

        billing = BillingCycle(
            BookingRepository(db_session), BrokenMembers(db_session), TransactionRepository(db_session), clock,
        )
        report = billing.generate_monthly_invoices()

        assert report.failed == 2
        assert report.succeeded == 0
        assert _transactions(db_session) == []


class TestFlagOverdue:
    def test_member_with_unpaid_invoice_becomes_pending(self, billing, db_session, member, other_member):
        TransactionRepository(db_session).create(
            id="inv-1",
            user_id=member.id,
            description="Monthly fee 03/2026",
            amount=50.0,
            status=models.TX_PENDING,
            type=models.TX_MONTHLY,
            due_date=date(2026, 3, 15),
        )

        report = billing.flag_overdue(date(2026, 3, 16))

        db_session.refresh(member)
        db_session.refresh(other_member)
        assert member.status == models.USER_PENDING
        assert other_member.status == models.USER_ACTIVE
        assert report.succeeded == 1

    def test_failure_for_one_member_does_not_stop_flagging(self, db_session, clock, member, other_member):
        for user in (member, other_member):
            TransactionRepository(db_session).create(
                id=f"inv-{user.id}",
                user_id=user.id,
                description="Monthly fee 03/2026",
                amount=50.0,
                status=models.TX_PENDING,
                type=models.TX_MONTHLY,
            )

        class FlakyTransactions(TransactionRepository):
            def list_pending_monthly_by_user(self, user_id):
                if user_id == member.id:
                    raise OperationalError("SELECT transactions", {}, Exception("db down"))
                return super().list_pending_monthly_by_user(user_id)

        billing = BillingCycle(
            BookingRepository(db_session), MemberRepository(db_session), FlakyTransactions(db_session), clock,
        )
        report = billing.flag_overdue()

        db_session.refresh(other_member)
        assert report.failed == 1
        assert report.failures[0].user_id == member.id
        assert report.succeeded == 1
        assert other_member.status == models.USER_PENDING

    def test_one_off_charges_do_not_flag(self, billing, db_session, member):
        TransactionRepository(db_session).create(
            id="charge_1",
            user_id=member.id,
            description="Extra guests",
            amount=10.0,
            status=models.TX_PENDING,
            type=models.TX_ONE_OFF,
        )
        billing.flag_overdue()
        db_session.refresh(member)
        assert member.status == models.USER_ACTIVE


class TestConfirmPayment:
    def _invoice(self, db_session, user):
        return TransactionRepository(db_session).create(
            id="inv-1",
            user_id=user.id,
            description="Monthly fee 03/2026",
            amount=50.0,
            status=models.TX_PENDING,
            type=models.TX_MONTHLY,
        )

    def test_approved_payment_settles_and_reactivates(self, billing, db_session, pending_member, clock):
        self._invoice(db_session, pending_member)

        transaction = billing.confirm_payment("inv-1", approved=True, payment_gateway_id="mp-123")

        db_session.refresh(pending_member)
        assert transaction.status == models.TX_PAID
        assert transaction.paid_at == clock.now()
        assert transaction.payment_gateway_id == "mp-123"
        assert pending_member.status == models.USER_ACTIVE

    def test_rejected_payment_changes_nothing(self, billing, db_session, pending_member):
        self._invoice(db_session, pending_member)

        transaction = billing.confirm_payment("inv-1", approved=False)

        db_session.refresh(pending_member)
        assert transaction.status == models.TX_PENDING
        assert pending_member.status == models.USER_PENDING

    def test_unknown_transaction(self, billing):
        with pytest.raises(ValidationError):
            billing.confirm_payment("missing", approved=True)


class TestGuestChargeSweep:
    def test_restores_a_missing_charge(self, billing, db_session, book, sample_room, member, visitor):
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30", guests=[visitor.id] * 3)

        report = billing.sweep_guest_charges()

        charge = TransactionRepository(db_session).get(charge_id(booking.id))
        assert report.succeeded == 1
        assert charge.amount == 10.0
        assert charge.status == models.TX_PENDING

    def test_second_run_changes_nothing(self, billing, db_session, book, sample_room, member, visitor):
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30", guests=[visitor.id] * 3)

        billing.sweep_guest_charges()
        billing.sweep_guest_charges()

        charges = _transactions(db_session, id=charge_id(booking.id))
        assert len(charges) == 1
        assert charges[0].amount == 10.0

    def test_paid_charge_is_left_alone(self, billing, db_session, book, sample_room, member, visitor):
        booking = book(sample_room, member, TOMORROW, "13:00", "17:30", guests=[visitor.id] * 3)
        billing.sweep_guest_charges()
        billing.confirm_payment(charge_id(booking.id), approved=True)

        report = billing.sweep_guest_charges()

        charge = TransactionRepository(db_session).get(charge_id(booking.id))
        assert report.succeeded == 0
        assert report.skipped == 1
        assert charge.status == models.TX_PAID

    def test_bookings_without_guests_are_skipped(self, billing, db_session, book, sample_room, member):
        book(sample_room, member, TOMORROW, "13:00", "17:30")

        report = billing.sweep_guest_charges()

        assert report.skipped == 1
        assert _transactions(db_session) == []


class TestStoreReads:
    def test_read_failure_is_an_upstream_failure(self, db_session):
        def broken():
            raise OperationalError("SELECT users", {}, Exception("db down"))

        with pytest.raises(UpstreamWriteFailure):
            MemberRepository(db_session)._read(broken)
