"""
Fixed-slot availability for rooms.

A day offers four canonical sessions. Occupancy is tracked in half-hour
units keyed by ``(date, index)`` where ``index`` is ``hour * 2 + minute // 30``;
a late-night session therefore claims units on two calendar dates.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from ..models import BOOKING_CANCELLED, ROOM_AVAILABLE
from .exceptions import DataInconsistency, ValidationError

CANONICAL_SLOTS = ("08:00", "13:00", "18:00", "23:00")
LATE_NIGHT_SLOT = "23:00"

UNIT = timedelta(minutes=30)
# Adjacent sessions of one organizer closer than this are shown as one block
GROUPING_GAP = timedelta(minutes=30)

Unit = Tuple[date, int]


def parse_time(value: str) -> time:
    """Parse an ``HH:MM`` string that sits on a half-hour boundary."""
    try:
        parsed = datetime.strptime(value, "%H:%M").time()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid time {value!r}; expected HH:MM.")
    if parsed.minute not in (0, 30):
        raise ValidationError(f"Invalid time {value!r}; sessions start on the hour or half hour.")
    return parsed


def slot_duration(start_time: str) -> float:
    """Length of a session in hours: 8 for the late-night slot, 4.5 otherwise."""
    return 8 if start_time == LATE_NIGHT_SLOT else 4.5


def slot_end(day: date, start_time: str) -> Tuple[date, str]:
    """Return ``(end_date, end_time)``; ``end_date`` is the next day past midnight."""
    start = datetime.combine(day, parse_time(start_time))
    end = start + timedelta(hours=slot_duration(start_time))
    return end.date(), end.strftime("%H:%M")


def session_span(day: date, start_time: str, end_time: str) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, parse_time(start_time))
    end = datetime.combine(day, parse_time(end_time))
    if end < start:
        end += timedelta(days=1)
    return start, end


def units_between(start: datetime, end: datetime) -> List[Unit]:
    units = []
    current = start
    while current < end:
        units.append((current.date(), current.hour * 2 + current.minute // 30))
        current += UNIT
    return units


def booking_units(booking) -> List[Unit]:
    return units_between(*session_span(booking.date, booking.start_time, booking.end_time))


def slot_units(day: date, start_time: str) -> List[Unit]:
    start = datetime.combine(day, parse_time(start_time))
    return units_between(start, start + timedelta(hours=slot_duration(start_time)))


def is_active(booking) -> bool:
    return booking.status != BOOKING_CANCELLED


def occupied_half_hour_units(bookings: Iterable) -> Set[Unit]:
    """Union of the half-hour units of every non-cancelled booking."""
    occupied: Set[Unit] = set()
    for booking in bookings:
        if is_active(booking):
            occupied.update(booking_units(booking))
    return occupied


def conflicts(first, second) -> bool:
    """Two bookings conflict iff their occupied units intersect."""
    return bool(occupied_half_hour_units([first]) & occupied_half_hour_units([second]))


def occupancy(bookings: Iterable) -> Dict[Unit, object]:
    """
    Map every occupied unit to the booking holding it.

    Raises
    ------
    DataInconsistency
        If two non-cancelled bookings hold the same unit.
    """
    owners: Dict[Unit, object] = {}
    for booking in bookings:
        if not is_active(booking):
            continue
        for unit in booking_units(booking):
            holder = owners.get(unit)
            if holder is not None and holder is not booking:
                raise DataInconsistency(
                    f"Bookings {holder.id} and {booking.id} overlap on {unit[0].isoformat()}",
                    booking_ids=(holder.id, booking.id),
                )
            owners[unit] = booking
    return owners


def _room_bookings(room, bookings: Iterable) -> List:
    return [b for b in bookings if b.room_id == room.id]


def available_start_slots(room, day: date, bookings: Iterable) -> List[str]:
    """
    Canonical start times on ``day`` whose units are all free.

    ``bookings`` should cover the previous and next dates as well, so that a
    late-night session spilling over midnight is taken into account.
    """
    if getattr(room, "status", ROOM_AVAILABLE) != ROOM_AVAILABLE:
        return []
    occupied = occupancy(_room_bookings(room, bookings))
    return [
        slot for slot in CANONICAL_SLOTS
        if not any(unit in occupied for unit in slot_units(day, slot))
    ]


def available_end_slots(room, day: date, chosen_start: str, bookings: Iterable) -> List[str]:
    """
    End times reachable from ``chosen_start`` by chaining free canonical slots.

    Only slot ends are offered, so a session always covers whole slots, e.g.
    13:00 can end at 17:30, or at 22:30 when the 18:00 slot is free too.
    """
    bookings = list(bookings)
    if chosen_start not in available_start_slots(room, day, bookings):
        raise ValidationError(f"{chosen_start} is not an available start time for this room.")

    occupied = occupancy(_room_bookings(room, bookings))
    ends = []
    for slot in CANONICAL_SLOTS[CANONICAL_SLOTS.index(chosen_start):]:
        if any(unit in occupied for unit in slot_units(day, slot)):
            break
        ends.append(slot_end(day, slot)[1])
    return ends


def check_session(room, day: date, start_time: str, end_time: str, bookings: Iterable) -> List[Unit]:
    """Validate a start/end choice and return the units the session will occupy."""
    ends = available_end_slots(room, day, start_time, bookings)
    if end_time not in ends:
        raise ValidationError(
            f"{end_time} is not a valid end time for a session starting at {start_time}; "
            f"choose one of: {', '.join(ends)}."
        )
    return units_between(*session_span(day, start_time, end_time))


@dataclass
class SessionBlock:
    room_id: int
    organizer_id: int
    start: datetime
    end: datetime
    booking_ids: List[int] = field(default_factory=list)


def group_sessions(bookings: Sequence) -> List[SessionBlock]:
    """Merge back-to-back bookings of one organizer in one room into display blocks."""
    spans = sorted(
        (
            (b.room_id, b.organizer_id, *session_span(b.date, b.start_time, b.end_time), b.id)
            for b in bookings if is_active(b)
        ),
        key=lambda item: (item[0], item[1], item[2]),
    )

    blocks: List[SessionBlock] = []
    for room_id, organizer_id, start, end, booking_id in spans:
        last = blocks[-1] if blocks else None
        if (
            last is not None
            and last.room_id == room_id
            and last.organizer_id == organizer_id
            and start - last.end <= GROUPING_GAP
        ):
            last.end = max(last.end, end)
            last.booking_ids.append(booking_id)
        else:
            blocks.append(SessionBlock(room_id, organizer_id, start, end, [booking_id]))

    blocks.sort(key=lambda block: (block.start, block.room_id))
    return blocks
