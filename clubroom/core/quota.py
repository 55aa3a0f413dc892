"""Plan quotas and extra-guest counting for booking organizers."""
from datetime import date, timedelta
from typing import Iterable, List, Optional

from .exceptions import QuotaExceeded
from .slots import LATE_NIGHT_SLOT, is_active, slot_end

LATE_NIGHT_END = slot_end(date(2000, 1, 1), LATE_NIGHT_SLOT)[1]


def _limit(value: Optional[int]) -> int:
    # 0 and None both mean "no cap"
    return value or 0


def _organized(organizer_id, bookings: Iterable) -> List:
    return [b for b in bookings if b.organizer_id == organizer_id and is_active(b)]


def takes_late_night(start_time: str, end_time: Optional[str] = None) -> bool:
    """True when the session starts in, or is chained into, the late-night slot."""
    return start_time == LATE_NIGHT_SLOT or end_time == LATE_NIGHT_END


def week_bounds(day: date):
    """Monday and Sunday of the ISO week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def count_in_week(organizer_id, day: date, bookings: Iterable) -> int:
    monday, sunday = week_bounds(day)
    return sum(1 for b in _organized(organizer_id, bookings) if monday <= b.date <= sunday)


def count_in_month(organizer_id, day: date, bookings: Iterable) -> int:
    return sum(
        1 for b in _organized(organizer_id, bookings)
        if (b.date.year, b.date.month) == (day.year, day.month)
    )


def count_late_night_in_month(organizer_id, day: date, bookings: Iterable) -> int:
    return sum(
        1 for b in _organized(organizer_id, bookings)
        if takes_late_night(b.start_time, b.end_time) and (b.date.year, b.date.month) == (day.year, day.month)
    )


def quota_violations(
    plan, organizer_id, day: date, start_time: str, existing: Iterable, end_time: Optional[str] = None,
) -> List[QuotaExceeded]:
    """Every quota the new booking would break, weekly first."""
    existing = list(existing)
    violations = []

    weekly = _limit(plan.weekly_quota)
    if weekly > 0 and count_in_week(organizer_id, day, existing) >= weekly:
        violations.append(QuotaExceeded(QuotaExceeded.WEEKLY, weekly))

    monthly = _limit(plan.monthly_quota)
    if monthly > 0 and count_in_month(organizer_id, day, existing) >= monthly:
        violations.append(QuotaExceeded(QuotaExceeded.MONTHLY, monthly))

    late_night = _limit(plan.late_night_quota)
    if (
        takes_late_night(start_time, end_time)
        and late_night > 0
        and count_late_night_in_month(organizer_id, day, existing) >= late_night
    ):
        violations.append(QuotaExceeded(QuotaExceeded.LATE_NIGHT, late_night))

    return violations


def validate_quota(
    plan, organizer_id, day: date, start_time: str, existing: Iterable, end_time: Optional[str] = None,
) -> None:
    """
    Check a prospective booking against the organizer's plan.

    Raises
    ------
    QuotaExceeded
        For the first quota already reached (weekly, then monthly, then late-night).
    """
    violations = quota_violations(plan, organizer_id, day, start_time, existing, end_time)
    if violations:
        raise violations[0]


def guest_count(bookings: Iterable) -> int:
    return sum(len(b.guest_ids or []) for b in bookings if is_active(b))


def extra_guests_to_charge(
    plan,
    organizer_id,
    cycle_start: date,
    bookings_in_cycle_excluding_this: Iterable,
    guests_in_this_booking: int,
) -> int:
    """
    Guests of this booking that fall beyond the plan's free invites.

    Guests already billed on earlier bookings of the cycle are subtracted,
    so each guest over the allowance is charged exactly once.
    """
    earlier = [
        b for b in _organized(organizer_id, bookings_in_cycle_excluding_this)
        if b.date >= cycle_start
    ]
    before = guest_count(earlier)
    total = before + guests_in_this_booking
    invites = plan.invites or 0

    previously_charged = max(0, before - invites)
    return max(0, (total - invites) - previously_charged)
