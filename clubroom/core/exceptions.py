class ClubroomError(Exception):
    """Base class for domain errors."""


class ValidationError(ClubroomError):
    """A request breaks a booking rule; the message is shown to the member."""


class CapacityExceeded(ValidationError):
    def __init__(self, attendees: int, capacity: int):
        self.attendees = attendees
        self.capacity = capacity
        super().__init__(
            f"Total attendees ({attendees}) exceed the room capacity ({capacity})."
        )


class QuotaExceeded(ValidationError):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    LATE_NIGHT = "late_night"

    _LABELS = {
        WEEKLY: "weekly",
        MONTHLY: "monthly",
        LATE_NIGHT: "late-night (23:00) monthly",
    }

    def __init__(self, kind: str, quota: int):
        self.kind = kind
        self.quota = quota
        super().__init__(f"You have reached your {self._LABELS[kind]} quota of {quota} booking(s).")


class SlotConflict(ValidationError):
    """The chosen slot was taken by another booking."""


class DataInconsistency(ClubroomError):
    """Stored bookings overlap although the store should have prevented it."""

    def __init__(self, message: str, booking_ids=()):
        self.booking_ids = tuple(booking_ids)
        super().__init__(message)


class UpstreamWriteFailure(ClubroomError):
    """The backing store could not be read or written; safe to retry."""


class PartialBatchFailure(ClubroomError):
    """One unit of a batch job failed; recorded in the report, never raised out of the job."""

    def __init__(self, user_id, cause: Exception):
        self.user_id = user_id
        self.cause = cause
        super().__init__(f"user {user_id}: {cause}")
