from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from tempfile import TemporaryDirectory
from zoneinfo import ZoneInfo
import logging
import unittest

from washremind.models import BookingSnapshot, JobState, Scheduled, Skipped, ValidationError
from washremind.queue import QueueUnavailable, ReminderQueue
from washremind.scheduler import ReminderScheduler
from washremind.utils import to_utc_iso

LONDON = ZoneInfo("Europe/London")
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def make_snapshot(date: str, time: str, email: str = "sam@example.com") -> BookingSnapshot:
    return BookingSnapshot.from_dict(
        {
            "customerName": "Sam Taylor",
            "customerEmail": email,
            "vehicleMake": "Ford",
            "vehicleModel": "Focus",
            "packageName": "Full Valet",
            "extras": ["Pet Hair"],
            "date": date,
            "time": time,
            "estimatedTime": "2 hours",
        }
    )


class ReminderSchedulerTest(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = TemporaryDirectory()
        self.queue = ReminderQueue(Path(self.temp_dir.name) / "washremind.db", clock=lambda: NOW)
        self.queue.init_schema()
        self.logger = logging.getLogger("test_washremind.scheduler")
        self.logger.handlers.clear()
        self.logger.addHandler(logging.NullHandler())

    def tearDown(self) -> None:
        self.queue.close()
        self.temp_dir.cleanup()

    def make_scheduler(self, *, dedupe: bool = False) -> ReminderScheduler:
        return ReminderScheduler(self.queue, self.logger, tz=LONDON, dedupe=dedupe, clock=lambda: NOW)

    def test_booking_two_days_out_is_scheduled_a_day_before(self) -> None:
        snapshot = make_snapshot("2026-03-12", "12:00")
        outcome = self.make_scheduler().schedule(snapshot)

        assert isinstance(outcome, Scheduled)
        appointment = datetime(2026, 3, 12, 12, 0, tzinfo=LONDON)
        self.assertEqual(outcome.fire_at, appointment - timedelta(hours=24))

        job = self.queue.get_job(outcome.job_id)
        assert job is not None
        self.assertEqual(job.state, JobState.PENDING)
        self.assertEqual(job.visible_at, to_utc_iso(outcome.fire_at))
        self.assertEqual(job.payload, snapshot.to_dict())
        self.assertEqual(job.snapshot(), snapshot)

    def test_booking_ten_hours_out_is_skipped(self) -> None:
        outcome = self.make_scheduler().schedule(make_snapshot("2026-03-10", "22:00"))
        self.assertEqual(outcome, Skipped(reason="too soon"))
        self.assertEqual(self.queue.summary_counts()["pending"], 0)

    def test_past_booking_is_skipped(self) -> None:
        outcome = self.make_scheduler().schedule(make_snapshot("2026-03-01", "09:00"))
        self.assertIsInstance(outcome, Skipped)

    def test_outcome_matches_lead_window_for_range_of_appointments(self) -> None:
        scheduler = self.make_scheduler()
        for hours_ahead in [1, 12, 23, 24, 25, 48, 24 * 14]:
            appointment = (NOW + timedelta(hours=hours_ahead)).astimezone(LONDON)
            snapshot = make_snapshot(appointment.strftime("%Y-%m-%d"), appointment.strftime("%H:%M"))
            with self.subTest(hours_ahead=hours_ahead):
                outcome = scheduler.schedule(snapshot)
                if hours_ahead > 24:
                    self.assertIsInstance(outcome, Scheduled)
                else:
                    self.assertIsInstance(outcome, Skipped)

    def test_scheduling_twice_creates_two_jobs(self) -> None:
        scheduler = self.make_scheduler()
        snapshot = make_snapshot("2026-03-12", "12:00")
        first = scheduler.schedule(snapshot)
        second = scheduler.schedule(snapshot)
        assert isinstance(first, Scheduled) and isinstance(second, Scheduled)
        self.assertNotEqual(first.job_id, second.job_id)
        self.assertEqual(self.queue.summary_counts()["pending"], 2)

    def test_dedupe_reuses_job_for_same_booking(self) -> None:
        scheduler = self.make_scheduler(dedupe=True)
        first = scheduler.schedule(make_snapshot("2026-03-12", "12:00"))
        second = scheduler.schedule(make_snapshot("2026-03-12", "12:00", email="SAM@example.com"))
        other_slot = scheduler.schedule(make_snapshot("2026-03-12", "14:00"))
        assert isinstance(first, Scheduled) and isinstance(second, Scheduled) and isinstance(other_slot, Scheduled)
        self.assertEqual(first.job_id, second.job_id)
        self.assertNotEqual(first.job_id, other_slot.job_id)

    def test_nonexistent_local_time_is_rejected_before_enqueue(self) -> None:
        snapshot = make_snapshot("2026-03-29", "01:30")
        with self.assertRaises(ValidationError):
            self.make_scheduler().schedule(snapshot)
        self.assertEqual(self.queue.summary_counts()["pending"], 0)

    def test_queue_failure_propagates(self) -> None:
        scheduler = self.make_scheduler()
        self.queue.close()
        with self.assertRaises(QueueUnavailable):
            scheduler.schedule(make_snapshot("2026-03-12", "12:00"))
        self.queue = ReminderQueue(Path(self.temp_dir.name) / "washremind.db", clock=lambda: NOW)


if __name__ == "__main__":
    unittest.main()
