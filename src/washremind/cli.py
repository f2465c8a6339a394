from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from pathlib import Path

from .app_logging import log_with_fields, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .mailer import MailerSendClient
from .models import BookingSnapshot, JobState, Scheduled, ValidationError
from .queue import QueueUnavailable, ReminderQueue
from .scheduler import ReminderScheduler
from .worker import ReminderWorker, run_worker_pool


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="washremind", description="Car wash appointment reminder queue")
    parser.add_argument("--config", required=True, help="Path to washremind YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    worker_parser = subparsers.add_parser("worker", help="Run reminder workers")
    worker_parser.add_argument("--count", type=int, default=1, help="Number of worker threads")
    worker_parser.add_argument(
        "--once",
        action="store_true",
        help="Process at most one due reminder, then exit",
    )

    schedule_parser = subparsers.add_parser("schedule", help="Schedule a reminder for a booking")
    schedule_parser.add_argument("--booking", required=True, help="Path to booking JSON")

    subparsers.add_parser("status", help="Show job counts by state")

    list_parser = subparsers.add_parser("list", help="List jobs in one state")
    list_parser.add_argument("--state", choices=[state.value for state in JobState], default="pending")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a pending reminder")
    cancel_parser.add_argument("--job-id", required=True, help="Job id to cancel")
    return parser


def cmd_worker(config: AppConfig, *, count: int = 1, once: bool = False) -> int:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log)
    if count < 1:
        print("--count must be >= 1", file=sys.stderr)
        return 2

    try:
        api_key = config.mailer.api_key()
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    if once:
        queue = ReminderQueue.from_config(config)
        sender = MailerSendClient(config.mailer, api_key)
        try:
            worker = ReminderWorker(queue, sender, logger, business=config.business)
            worker.run_once()
            return 0
        finally:
            sender.close()
            queue.close()

    stop_event = threading.Event()
    try:
        run_worker_pool(
            config,
            count,
            lambda: MailerSendClient(config.mailer, api_key),
            logger,
            stop_event,
        )
    except KeyboardInterrupt:
        stop_event.set()
        log_with_fields(logger, logging.INFO, "shutdown", reason="keyboard_interrupt")
    return 0


def cmd_schedule(config: AppConfig, booking_path: Path) -> int:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log)
    try:
        snapshot = BookingSnapshot.from_dict(json.loads(booking_path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        print(f"invalid booking: {exc}", file=sys.stderr)
        return 2

    try:
        queue = ReminderQueue.from_config(config)
    except QueueUnavailable as exc:
        print(str(exc), file=sys.stderr)
        return 1
    try:
        scheduler = ReminderScheduler.from_config(config, queue, logger)
        outcome = scheduler.schedule(snapshot)
    except ValidationError as exc:
        print(f"invalid booking: {exc}", file=sys.stderr)
        return 2
    except QueueUnavailable as exc:
        print(str(exc), file=sys.stderr)
        return 1
    finally:
        queue.close()

    if isinstance(outcome, Scheduled):
        print(f"scheduled {outcome.job_id} at {outcome.fire_at.isoformat()}")
    else:
        print(f"skipped: {outcome.reason}")
    return 0


def cmd_status(config: AppConfig) -> int:
    ensure_local_paths(config)
    queue = ReminderQueue.from_config(config)
    try:
        counts = queue.summary_counts()
        print(f"Queue: {queue.name}")
        for state in JobState:
            print(f"  {state.value:17} {counts.get(state.value, 0)}")
        return 0
    finally:
        queue.close()


def cmd_list(config: AppConfig, state: str) -> int:
    ensure_local_paths(config)
    queue = ReminderQueue.from_config(config)
    try:
        jobs = queue.list_jobs_by_state(JobState(state))
        if not jobs:
            print(f"no {state} jobs")
        for job in jobs:
            error = f" error={job.last_error}" if job.last_error else ""
            print(
                f"{job.job_id} attempts={job.attempts}/{job.max_attempts} "
                f"visible_at={job.visible_at} email={job.payload.get('customerEmail')}{error}"
            )
        return 0
    finally:
        queue.close()


def cmd_cancel(config: AppConfig, job_id: str) -> int:
    ensure_local_paths(config)
    queue = ReminderQueue.from_config(config)
    try:
        job = queue.get_job(job_id)
        if job is None:
            print(f"job not found: {job_id}", file=sys.stderr)
            return 2
        if not queue.cancel(job_id):
            print(f"job state must be pending to cancel, found: {job.state.value}", file=sys.stderr)
            return 2
        print(f"cancelled {job_id}")
        return 0
    finally:
        queue.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    if args.command == "worker":
        return cmd_worker(config, count=args.count, once=bool(args.once))
    if args.command == "schedule":
        return cmd_schedule(config, Path(args.booking))
    if args.command == "status":
        return cmd_status(config)
    if args.command == "list":
        return cmd_list(config, args.state)
    if args.command == "cancel":
        return cmd_cancel(config, args.job_id)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
