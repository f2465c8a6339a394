from __future__ import annotations

import logging
from typing import Any

from .app_logging import log_with_fields
from .models import BookingSnapshot, Outcome, Skipped, ValidationError
from .queue import QueueUnavailable
from .scheduler import ReminderScheduler


def schedule_after_confirmation(
    scheduler: ReminderScheduler,
    booking: BookingSnapshot | dict[str, Any],
    logger: logging.Logger,
) -> Outcome | None:
    """Schedule the reminder for a booking that has just been confirmed.

    The confirmation response must not wait on reminder problems, so failures
    are logged for operators and ``None`` is returned instead of raising.
    """
    try:
        snapshot = booking if isinstance(booking, BookingSnapshot) else BookingSnapshot.from_dict(booking)
        outcome = scheduler.schedule(snapshot)
    except ValidationError as exc:
        log_with_fields(logger, logging.ERROR, "reminder_rejected", error=str(exc))
        return None
    except QueueUnavailable as exc:
        log_with_fields(logger, logging.ERROR, "reminder_queue_unavailable", error=str(exc), exc_info=True)
        return None

    if isinstance(outcome, Skipped):
        log_with_fields(
            logger,
            logging.INFO,
            "reminder_not_needed",
            reason=outcome.reason,
            customer_email=snapshot.customer_email,
        )
    return outcome
