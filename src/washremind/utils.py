from __future__ import annotations

import hashlib
from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_utc_iso(value: datetime) -> str:
    # Fixed-width form so ISO strings compare in time order inside SQLite.
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def booking_job_key(customer_email: str, appointment_at: datetime) -> str:
    hasher = hashlib.sha256()
    hasher.update(customer_email.strip().lower().encode("utf-8"))
    hasher.update(b"|")
    hasher.update(to_utc_iso(appointment_at).encode("utf-8"))
    return hasher.hexdigest()
