"""
Memory profile of the slot and quota computations over a busy month.

Run with ``python -m memory_profiler profile_memory.py``.
"""
from datetime import date, timedelta

from memory_profiler import profile

from clubroom import models
from clubroom.core import quota, slots

ROOMS = [models.Room(id=i, name=f"Room {i}", capacity=8, status=models.ROOM_AVAILABLE) for i in range(1, 6)]
PLAN = models.Plan(name="Player", price=50.0, weekly_quota=2, monthly_quota=4,
                   late_night_quota=1, invites=2, extra_invite_price=10.0)


def busy_month(first_day: date):
    """Every room booked on every canonical slot except the late-night one."""
    bookings = []
    booking_id = 0
    for offset in range(31):
        day = first_day + timedelta(days=offset)
        for room in ROOMS:
            for start in slots.CANONICAL_SLOTS[:-1]:
                booking_id += 1
                bookings.append(models.Booking(
                    id=booking_id,
                    room_id=room.id,
                    organizer_id=booking_id % 40,
                    date=day,
                    start_time=start,
                    end_time=slots.slot_end(day, start)[1],
                    title="Session",
                    participant_ids=[booking_id % 40],
                    guest_ids=[],
                    status=models.BOOKING_CONFIRMED,
                ))
    return bookings


@profile
def run_scenario():
    first_day = date(2026, 3, 1)
    bookings = busy_month(first_day)

    for offset in range(31):
        day = first_day + timedelta(days=offset)
        for room in ROOMS:
            slots.available_start_slots(room, day, bookings)
            slots.available_end_slots(room, day, "23:00", bookings)

    for organizer_id in range(40):
        quota.quota_violations(PLAN, organizer_id, first_day + timedelta(days=10), "23:00", bookings)

    slots.group_sessions(bookings)


if __name__ == "__main__":
    run_scenario()
