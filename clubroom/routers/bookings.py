import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import schemas, models
from ..config import BOOKING_HORIZON_DAYS, CANCEL_NOTICE_HOURS
from ..core import quota, slots
from ..core.billing import BillingCycle
from ..core.exceptions import CapacityExceeded, UpstreamWriteFailure, ValidationError
from ..core.ports import Clock
from ..deps import get_billing, get_clock, get_current_user, get_db
from ..repository import BookingRepository, MemberRepository
from .rooms import bookings_around

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])

BOOKING_EDITORS = (models.ROLE_ADMIN, models.ROLE_EDITOR)


def _get_booking_or_404(db: Session, booking_id: int) -> models.Booking:
    booking = BookingRepository(db).get(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def _unique(ids) -> List[int]:
    return list(dict.fromkeys(ids))


def _check_attendees(db: Session, participant_ids, guest_ids, already_in=()) -> None:
    """
    Participants must be active members with a plan; guests must not be.

    ``already_in`` lists participants that are kept from an earlier version of
    the booking and are not re-checked.
    """
    overlap = set(participant_ids) & set(guest_ids)
    if overlap:
        raise ValidationError(f"Users {sorted(overlap)} cannot be both participants and guests.")

    users = {u.id: u for u in MemberRepository(db).get_users(set(participant_ids) | set(guest_ids))}
    missing = [uid for uid in list(participant_ids) + list(guest_ids) if uid not in users]
    if missing:
        raise ValidationError(f"Unknown users: {missing}.")

    for uid in participant_ids:
        if uid not in already_in and not users[uid].can_organize:
            raise ValidationError(f"{users[uid].name} is not an active member; add them as a guest.")
    for uid in guest_ids:
        if users[uid].can_organize:
            raise ValidationError(f"{users[uid].name} is an active member; add them as a participant.")


def _check_capacity(room: models.Room, participant_ids, guest_ids) -> None:
    attendees = len(participant_ids) + len(guest_ids)
    if attendees > room.capacity:
        raise CapacityExceeded(attendees, room.capacity)


def _check_booking_window(day: date, start_time: str, now: datetime) -> None:
    today = now.date()
    if day < today:
        raise ValidationError("Bookings cannot be made for past dates.")
    if day > today + timedelta(days=BOOKING_HORIZON_DAYS):
        raise ValidationError(f"Bookings can be made at most {BOOKING_HORIZON_DAYS} days ahead.")
    if datetime.combine(day, slots.parse_time(start_time)) <= now:
        raise ValidationError("That session has already started.")


def _charge_guests(billing: BillingCycle, booking: models.Booking, previous_guests, organizer: models.User) -> None:
    """
    Run the extra-guest charge for a stored booking.

    The booking is already committed, so a store failure here is logged and
    left to the guest-charge sweep instead of failing the request.
    """
    try:
        billing.on_booking_write(booking, previous_guests, organizer.plan, organizer)
    except UpstreamWriteFailure:
        logger.exception("Guest charge for booking %s failed; the sweep will retry it", booking.id)


def _quota_window(day: date):
    """Date range covering both the ISO week and the month of ``day``."""
    monday, sunday = quota.week_bounds(day)
    first_of_month = day.replace(day=1)
    next_month = (first_of_month + timedelta(days=32)).replace(day=1)
    return min(monday, first_of_month), max(sunday, next_month - timedelta(days=1))


@router.get("/", response_model=List[schemas.BookingOut])
def list_bookings(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    date: Optional[date] = None,
    room_id: Optional[int] = None,
):
    """
    List bookings.

    - Staff (admin, editor, reviewer) see **all** bookings.
    - Members see bookings they organize or take part in.
    """
    bookings = BookingRepository(db).list(room_id=room_id, date_from=date, date_to=date)
    if current_user.role in models.STAFF_ROLES:
        return bookings
    return [
        b for b in bookings
        if b.organizer_id == current_user.id or current_user.id in (b.participant_ids or [])
    ]


@router.get("/schedule", response_model=List[schemas.SessionBlockOut])
def booking_schedule(
    date: date,
    db: Session = Depends(get_db),
    _: models.User = Depends(get_current_user),
):
    """
    Sessions on a date, with back-to-back bookings of one organizer merged.

    Late-night sessions from the previous day are included since they are
    still running after midnight.
    """
    bookings = BookingRepository(db).list(date_from=date - timedelta(days=1), date_to=date)
    start_of_day = datetime.combine(date, datetime.min.time())
    blocks = [
        block for block in slots.group_sessions(bookings)
        if block.end > start_of_day
    ]
    return [schemas.SessionBlockOut(**vars(block)) for block in blocks]


@router.post("/", response_model=schemas.BookingOut)
def create_booking(
    booking_in: schemas.BookingCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
    billing: BillingCycle = Depends(get_billing),
):
    """
    Create a booking organized by the current user.

    Checks, in order: the organizer is an active member with a plan, the
    date is inside the booking window, the room accepts bookings, the
    attendees fit the room, the start and end are a legal slot choice, and
    the organizer's plan quotas. The organizer always heads the
    participant list. Extra guests are charged once the booking is stored.

    Raises
    ------
    HTTPException
        - 403 if the organizer may not book.
        - 404 if the room does not exist.
    ValidationError, CapacityExceeded, QuotaExceeded
        - 400 with a message naming the rule that was broken.
    SlotConflict
        - 409 if another booking took the slot concurrently.
    """
    if not current_user.can_organize:
        raise HTTPException(
            status_code=403,
            detail="Only active members with a plan can organize bookings",
        )

    _check_booking_window(booking_in.date, booking_in.start_time, clock.now())

    room = db.query(models.Room).filter(models.Room.id == booking_in.room_id).first()
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    if room.status != models.ROOM_AVAILABLE:
        raise ValidationError(f"Room {room.name} is not available for booking.")

    participants = _unique([current_user.id] + list(booking_in.participant_ids))
    guests = _unique(booking_in.guest_ids)
    _check_attendees(db, participants, guests, already_in=(current_user.id,))
    _check_capacity(room, participants, guests)

    repo = BookingRepository(db)
    units = slots.check_session(
        room,
        booking_in.date,
        booking_in.start_time,
        booking_in.end_time,
        bookings_around(db, room.id, booking_in.date),
    )

    window_start, window_end = _quota_window(booking_in.date)
    organized = repo.list(organizer_id=current_user.id, date_from=window_start, date_to=window_end)
    quota.validate_quota(
        current_user.plan, current_user.id, booking_in.date, booking_in.start_time, organized,
        end_time=booking_in.end_time,
    )

    booking = models.Booking(
        room_id=room.id,
        organizer_id=current_user.id,
        date=booking_in.date,
        start_time=booking_in.start_time,
        end_time=booking_in.end_time,
        title=booking_in.title,
        description=booking_in.description,
        participant_ids=participants,
        guest_ids=guests,
        status=models.BOOKING_CONFIRMED,
    )
    repo.create(booking, units)
    logger.info(
        "User %s booked room %s on %s %s-%s (booking %s)",
        current_user.id, room.id, booking.date, booking.start_time, booking.end_time, booking.id,
    )

    _charge_guests(billing, booking, None, current_user)
    return booking


@router.get("/{booking_id}", response_model=schemas.BookingOut)
def get_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    _: models.User = Depends(get_current_user),
):
    """Booking details; every signed-in member can see the schedule."""
    return _get_booking_or_404(db, booking_id)


@router.patch("/{booking_id}")
def update_booking(
    booking_id: int,
    booking_update: schemas.BookingUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    billing: BillingCycle = Depends(get_billing),
):
    """
    Update title, description, participants or guests of a booking.

    Only the organizer, an admin or an editor may edit. Room, date and times
    are fixed once booked. Emptying the participant list deletes the
    booking; changing the guests may add an extra-guest charge.
    """
    booking = _get_booking_or_404(db, booking_id)
    if booking.organizer_id != current_user.id and current_user.role not in BOOKING_EDITORS:
        raise HTTPException(status_code=403, detail="Not allowed to update this booking")

    data = booking_update.model_dump(exclude_unset=True)
    previous_guests = list(booking.guest_ids or [])
    previous_participants = list(booking.participant_ids or [])

    if "participant_ids" in data:
        data["participant_ids"] = _unique(data["participant_ids"] or [])
    if "guest_ids" in data:
        data["guest_ids"] = _unique(data["guest_ids"] or [])

    if "participant_ids" in data or "guest_ids" in data:
        participants = data.get("participant_ids", previous_participants)
        guests = data.get("guest_ids", previous_guests)
        _check_attendees(db, participants, guests, already_in=previous_participants)
        _check_capacity(booking.room, participants, guests)

    repo = BookingRepository(db)
    booking = repo.update(booking_id, **data)

    _charge_guests(billing, booking, previous_guests, booking.organizer)

    if repo.get(booking_id) is None:
        return {"detail": "Booking deleted: no participants left"}
    return schemas.BookingOut.model_validate(booking)


@router.delete("/{booking_id}")
def cancel_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """
    Cancel (delete) a booking.

    - Organizers can cancel their own bookings up to a few hours before the
      session starts.
    - Admins can cancel any booking at any time.
    """
    booking = _get_booking_or_404(db, booking_id)

    if current_user.role != models.ROLE_ADMIN:
        if booking.organizer_id != current_user.id:
            raise HTTPException(status_code=403, detail="Not allowed to cancel this booking")
        starts_at = datetime.combine(booking.date, slots.parse_time(booking.start_time))
        if starts_at - clock.now() < timedelta(hours=CANCEL_NOTICE_HOURS):
            raise ValidationError(
                f"Bookings can only be cancelled at least {CANCEL_NOTICE_HOURS} hours before they start."
            )

    BookingRepository(db).delete(booking_id)
    return {"detail": "Booking cancelled"}
