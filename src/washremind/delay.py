from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

DEFAULT_LEAD_TIME = timedelta(hours=24)


@dataclass(frozen=True, slots=True)
class ReminderDelay:
    fire_at: datetime
    delay: timedelta

    @property
    def is_due_in_future(self) -> bool:
        return self.delay > timedelta(0)


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"`{name}` must be timezone-aware")


def compute_reminder_delay(
    appointment_at: datetime,
    now: datetime,
    lead_time: timedelta = DEFAULT_LEAD_TIME,
) -> ReminderDelay:
    """Return when a reminder for ``appointment_at`` fires and how far off that is.

    A non-positive delay means the appointment is inside the lead window or
    already past; callers skip scheduling in that case.
    """
    _require_aware(appointment_at, "appointment_at")
    _require_aware(now, "now")
    # Lead time is elapsed time, not wall-clock time.
    fire_at = appointment_at.astimezone(UTC) - lead_time
    return ReminderDelay(fire_at=fire_at, delay=fire_at - now)


def backoff_delay(attempt: int, base: timedelta) -> timedelta:
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    return base * (2**attempt)
