from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, tzinfo
from enum import Enum
from typing import Any, TypeAlias

UNKNOWN = "Unknown"
TOO_SOON = "too soon"


class ValidationError(ValueError):
    """A booking snapshot that cannot be scheduled."""


class JobState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED_EXHAUSTED = "failed_exhausted"
    CANCELLED = "cancelled"


def _required_text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None or not str(value).strip():
        raise ValidationError(f"`{key}` is required")
    return str(value).strip()


def _optional_text(data: dict[str, Any], key: str, default: str = UNKNOWN) -> str:
    value = data.get(key)
    if value is None or not str(value).strip():
        return default
    return str(value).strip()


@dataclass(frozen=True, slots=True)
class BookingSnapshot:
    """Booking details captured once when the reminder is scheduled.

    The worker renders the reminder from this snapshot alone, so it is frozen
    and stored verbatim in the job payload.
    """

    customer_name: str
    customer_email: str
    package_name: str
    date: str
    time: str
    vehicle_make: str = UNKNOWN
    vehicle_model: str = UNKNOWN
    extras: tuple[str, ...] = field(default_factory=tuple)
    estimated_time: str = ""

    def __post_init__(self) -> None:
        if not self.customer_name.strip():
            raise ValidationError("`customerName` is required")
        email = self.customer_email.strip()
        if not email or "@" not in email:
            raise ValidationError(f"`customerEmail` is not a valid address: {self.customer_email!r}")
        if not isinstance(self.extras, tuple):
            object.__setattr__(self, "extras", tuple(self.extras))
        self.local_datetime()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookingSnapshot:
        if not isinstance(data, dict):
            raise ValidationError("booking must be a mapping")
        extras_raw = data.get("extras") or []
        if not isinstance(extras_raw, (list, tuple)):
            raise ValidationError("`extras` must be a list")
        return cls(
            customer_name=_required_text(data, "customerName"),
            customer_email=_required_text(data, "customerEmail"),
            package_name=_optional_text(data, "packageName", default=""),
            date=_required_text(data, "date"),
            time=_required_text(data, "time"),
            vehicle_make=_optional_text(data, "vehicleMake"),
            vehicle_model=_optional_text(data, "vehicleModel"),
            extras=tuple(str(item) for item in extras_raw),
            estimated_time=_optional_text(data, "estimatedTime", default=""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "vehicleMake": self.vehicle_make,
            "vehicleModel": self.vehicle_model,
            "packageName": self.package_name,
            "extras": list(self.extras),
            "date": self.date,
            "time": self.time,
            "estimatedTime": self.estimated_time,
        }

    def local_datetime(self) -> datetime:
        try:
            return datetime.combine(date.fromisoformat(self.date), time.fromisoformat(self.time))
        except ValueError as exc:
            raise ValidationError(f"invalid appointment date/time {self.date!r} {self.time!r}: {exc}") from exc

    def appointment_at(self, tz: tzinfo) -> datetime:
        local = self.local_datetime().replace(tzinfo=tz)
        # Wall-clock times skipped by a DST jump do not survive a UTC round trip.
        round_trip = local.astimezone(UTC).astimezone(tz)
        if round_trip.replace(tzinfo=None) != local.replace(tzinfo=None):
            raise ValidationError(f"appointment {self.date} {self.time} does not exist in {tz}")
        return local


@dataclass(slots=True)
class ReminderJob:
    job_id: str
    queue_name: str
    payload: dict[str, Any]
    state: JobState
    attempts: int
    max_attempts: int
    visible_at: str
    created_at: str
    updated_at: str
    reclaims: int = 0
    job_key: str | None = None
    locked_by: str | None = None
    lease_expires_at: str | None = None
    completed_at: str | None = None
    failed_at: str | None = None
    last_error: str | None = None

    def snapshot(self) -> BookingSnapshot:
        return BookingSnapshot.from_dict(self.payload)


@dataclass(frozen=True, slots=True)
class Scheduled:
    job_id: str
    fire_at: datetime


@dataclass(frozen=True, slots=True)
class Skipped:
    reason: str = TOO_SOON


Outcome: TypeAlias = Scheduled | Skipped


@dataclass(frozen=True, slots=True)
class Sent:
    message_id: str | None = None


@dataclass(frozen=True, slots=True)
class TransientFailure:
    reason: str


SendResult: TypeAlias = Sent | TransientFailure


@dataclass(frozen=True, slots=True)
class ReminderMessage:
    subject: str
    html: str
    text: str
