from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .app_logging import log_with_fields
from .config import AppConfig, BusinessConfig
from .mailer import ReminderSender
from .models import JobState, ReminderJob, SendResult, Sent, TransientFailure, ValidationError
from .queue import ReminderQueue
from .reminder import render_reminder


class ReminderWorker:
    def __init__(
        self,
        queue: ReminderQueue,
        sender: ReminderSender,
        logger: logging.Logger,
        *,
        business: BusinessConfig | None = None,
        name: str = "worker-1",
        poll_interval_seconds: float = 5.0,
    ) -> None:
        self.queue = queue
        self.sender = sender
        self.logger = logger
        self.business = business or BusinessConfig()
        self.name = name
        self.poll_interval_seconds = poll_interval_seconds

    def run_forever(self, stop_event: threading.Event) -> None:
        log_with_fields(self.logger, logging.INFO, "worker_started", worker=self.name)
        while not stop_event.is_set():
            if not self.run_once():
                stop_event.wait(self.poll_interval_seconds)
        log_with_fields(self.logger, logging.INFO, "worker_stopped", worker=self.name)

    def run_once(self) -> bool:
        job = self.queue.claim(self.name)
        if job is None:
            return False
        log_with_fields(
            self.logger,
            logging.INFO,
            "job_claimed",
            worker=self.name,
            job_id=job.job_id,
            attempt=job.attempts,
            reclaims=job.reclaims,
        )
        self.process_job(job)
        return True

    def _send(self, job: ReminderJob) -> SendResult:
        try:
            snapshot = job.snapshot()
        except ValidationError as exc:
            return TransientFailure(f"stored booking snapshot is invalid: {exc}")
        message = render_reminder(snapshot, self.business)
        try:
            return self.sender.send(message, snapshot.customer_email, snapshot.customer_name)
        except Exception as exc:
            # Any sender failure counts as a failed attempt.
            return TransientFailure(f"{type(exc).__name__}: {exc}")

    def process_job(self, job: ReminderJob) -> JobState:
        result = self._send(job)
        if isinstance(result, Sent):
            acked = self.queue.ack(job.job_id, worker_name=self.name)
            log_with_fields(
                self.logger,
                logging.INFO if acked else logging.WARNING,
                "reminder_sent" if acked else "reminder_sent_lease_lost",
                worker=self.name,
                job_id=job.job_id,
                attempt=job.attempts,
                message_id=result.message_id,
                customer_email=job.payload.get("customerEmail"),
            )
            if acked:
                return JobState.COMPLETED
            current = self.queue.get_job(job.job_id)
            return current.state if current else JobState.COMPLETED

        state = self.queue.fail(job.job_id, job.attempts, result.reason, worker_name=self.name)
        if state is JobState.ACTIVE:
            # Another worker reclaimed the job after our lease ran out.
            log_with_fields(
                self.logger,
                logging.WARNING,
                "reminder_failed_lease_lost",
                worker=self.name,
                job_id=job.job_id,
                attempt=job.attempts,
                error=result.reason,
            )
            return state
        if state is JobState.FAILED_EXHAUSTED:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "reminder_retries_exhausted",
                worker=self.name,
                job_id=job.job_id,
                attempts=job.attempts + 1,
                error=result.reason,
                customer_email=job.payload.get("customerEmail"),
            )
        else:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "reminder_send_failed",
                worker=self.name,
                job_id=job.job_id,
                attempt=job.attempts,
                error=result.reason,
                state=state.value,
            )
        return state


def run_worker_pool(
    config: AppConfig,
    count: int,
    sender_factory: Callable[[], ReminderSender],
    logger: logging.Logger,
    stop_event: threading.Event,
) -> None:
    """Run ``count`` workers in threads until ``stop_event`` is set.

    Each thread opens its own queue connection; workers share nothing else.
    """

    def _loop(name: str) -> None:
        queue = ReminderQueue.from_config(config)
        sender = sender_factory()
        try:
            worker = ReminderWorker(
                queue,
                sender,
                logger,
                business=config.business,
                name=name,
                poll_interval_seconds=config.queue.poll_interval_seconds,
            )
            worker.run_forever(stop_event)
        finally:
            close = getattr(sender, "close", None)
            if callable(close):
                close()
            queue.close()

    threads = [
        threading.Thread(target=_loop, args=(f"worker-{index + 1}",), name=f"worker-{index + 1}")
        for index in range(count)
    ]
    for thread in threads:
        thread.start()
    try:
        while any(thread.is_alive() for thread in threads):
            for thread in threads:
                thread.join(timeout=0.5)
    finally:
        stop_event.set()
        for thread in threads:
            thread.join()
