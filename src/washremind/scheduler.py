from __future__ import annotations

import logging
from datetime import timedelta, tzinfo
from zoneinfo import ZoneInfo

from .app_logging import log_with_fields
from .config import AppConfig
from .delay import DEFAULT_LEAD_TIME, compute_reminder_delay
from .models import BookingSnapshot, Outcome, Scheduled, Skipped, TOO_SOON
from .queue import Clock, ReminderQueue
from .utils import booking_job_key, to_utc_iso, utc_now


class ReminderScheduler:
    def __init__(
        self,
        queue: ReminderQueue,
        logger: logging.Logger,
        *,
        lead_time: timedelta = DEFAULT_LEAD_TIME,
        tz: tzinfo = ZoneInfo("Europe/London"),
        dedupe: bool = False,
        clock: Clock = utc_now,
    ) -> None:
        self.queue = queue
        self.logger = logger
        self.lead_time = lead_time
        self.tz = tz
        self.dedupe = dedupe
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        queue: ReminderQueue,
        logger: logging.Logger,
        clock: Clock = utc_now,
    ) -> ReminderScheduler:
        return cls(
            queue,
            logger,
            lead_time=config.reminder.lead_time,
            tz=config.reminder.zone,
            dedupe=config.queue.dedupe,
            clock=clock,
        )

    def schedule(self, snapshot: BookingSnapshot) -> Outcome:
        """Queue a reminder to fire one lead time before the appointment.

        Raises ``ValidationError`` when the appointment is not a real instant
        and ``QueueUnavailable`` when the job cannot be stored. An appointment
        inside the lead window is not an error and yields ``Skipped``.
        """
        appointment_at = snapshot.appointment_at(self.tz)
        timing = compute_reminder_delay(appointment_at, self.clock(), self.lead_time)

        if not timing.is_due_in_future:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "reminder_skipped",
                reason=TOO_SOON,
                customer_email=snapshot.customer_email,
                appointment_at=to_utc_iso(appointment_at),
            )
            return Skipped(reason=TOO_SOON)

        job_key = booking_job_key(snapshot.customer_email, appointment_at) if self.dedupe else None
        job_id = self.queue.enqueue(snapshot.to_dict(), timing.delay, job_key=job_key)
        log_with_fields(
            self.logger,
            logging.INFO,
            "reminder_scheduled",
            job_id=job_id,
            customer_email=snapshot.customer_email,
            fire_at=to_utc_iso(timing.fire_at),
            delay_minutes=int(timing.delay.total_seconds() // 60),
        )
        return Scheduled(job_id=job_id, fire_at=timing.fire_at)
