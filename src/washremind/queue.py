from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .config import AppConfig
from .delay import backoff_delay
from .models import JobState, ReminderJob
from .utils import to_utc_iso, utc_now

MAX_ERROR_LENGTH = 500

Clock = Callable[[], datetime]


class QueueUnavailable(RuntimeError):
    pass


def _row_to_job(row: sqlite3.Row) -> ReminderJob:
    return ReminderJob(
        job_id=row["job_id"],
        queue_name=row["queue_name"],
        payload=json.loads(row["payload_json"]),
        state=JobState(row["state"]),
        attempts=int(row["attempts"]),
        max_attempts=int(row["max_attempts"]),
        reclaims=int(row["reclaims"]),
        visible_at=row["visible_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        job_key=row["job_key"],
        locked_by=row["locked_by"],
        lease_expires_at=row["lease_expires_at"],
        completed_at=row["completed_at"],
        failed_at=row["failed_at"],
        last_error=row["last_error"],
    )


# A job is claimable when its delay has elapsed, or when the worker holding it
# let its lease run out without acking or failing it.
_CLAIMABLE = """
    queue_name = ?
    AND (
        (state = 'pending' AND visible_at <= ?)
        OR (state = 'active' AND lease_expires_at <= ?)
    )
"""


class ReminderQueue:
    """Durable delayed job queue stored in SQLite.

    Each thread or process opens its own instance on the shared database file;
    claims are serialised by SQLite's write lock plus a conditional UPDATE, so
    one visible job is never handed to two workers at once.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        name: str = "reminders",
        max_attempts: int = 3,
        backoff_base: timedelta = timedelta(seconds=1),
        lease: timedelta = timedelta(minutes=5),
        max_reclaims: int = 3,
        clock: Clock = utc_now,
        busy_timeout_seconds: float = 30.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if max_reclaims < 1:
            raise ValueError("max_reclaims must be >= 1")
        self.db_path = db_path
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.lease = lease
        self.max_reclaims = max_reclaims
        self.clock = clock
        try:
            self.conn = sqlite3.connect(
                str(db_path),
                timeout=busy_timeout_seconds,
                isolation_level="IMMEDIATE",
                check_same_thread=False,
            )
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"cannot open queue database {db_path}: {exc}") from exc

    @classmethod
    def from_config(cls, config: AppConfig, clock: Clock = utc_now) -> ReminderQueue:
        queue = cls(
            config.paths.db,
            name=config.queue.name,
            max_attempts=config.queue.max_attempts,
            backoff_base=config.queue.backoff_base,
            lease=config.queue.lease,
            max_reclaims=config.queue.max_reclaims,
            clock=clock,
        )
        queue.init_schema()
        return queue

    def close(self) -> None:
        self.conn.close()

    def init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                job_id TEXT PRIMARY KEY,
                queue_name TEXT NOT NULL,
                job_key TEXT,
                payload_json TEXT NOT NULL,
                state TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                max_attempts INTEGER NOT NULL,
                reclaims INTEGER NOT NULL DEFAULT 0,
                visible_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                locked_by TEXT,
                lease_expires_at TEXT,
                completed_at TEXT,
                failed_at TEXT,
                last_error TEXT
            );

            CREATE TABLE IF NOT EXISTS job_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                worker_name TEXT,
                timestamp TEXT NOT NULL,
                details_json TEXT NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_queue_key
                ON jobs(queue_name, job_key);
            CREATE INDEX IF NOT EXISTS idx_jobs_queue_state_visible
                ON jobs(queue_name, state, visible_at);
            CREATE INDEX IF NOT EXISTS idx_job_events_job_timestamp
                ON job_events(job_id, timestamp);
            """
        )
        self.conn.commit()

    def _now_iso(self) -> str:
        return to_utc_iso(self.clock())

    def _insert_event(
        self,
        job_id: str,
        event_type: str,
        details: dict[str, Any] | None = None,
        worker_name: str | None = None,
    ) -> None:
        self.conn.execute(
            """
            INSERT INTO job_events(job_id, event_type, worker_name, timestamp, details_json)
            VALUES (?, ?, ?, ?, ?)
            """,
            (job_id, event_type, worker_name, self._now_iso(), json.dumps(details or {}, sort_keys=True)),
        )

    def add_event(
        self,
        job_id: str,
        event_type: str,
        details: dict[str, Any] | None = None,
        worker_name: str | None = None,
    ) -> None:
        self._insert_event(job_id, event_type, details, worker_name)
        self.conn.commit()

    def enqueue(self, payload: dict[str, Any], delay: timedelta, job_key: str | None = None) -> str:
        """Add a job that becomes claimable no earlier than ``now + delay``.

        With a ``job_key`` the insert is idempotent: a second enqueue with the
        same key returns the id of the job already stored.
        """
        if delay <= timedelta(0):
            raise ValueError("delay must be positive")
        now = self.clock()
        now_iso = to_utc_iso(now)
        visible_at = to_utc_iso(now + delay)
        job_id = uuid.uuid4().hex
        try:
            with self.conn:
                cursor = self.conn.execute(
                    """
                    INSERT OR IGNORE INTO jobs(
                        job_id, queue_name, job_key, payload_json, state, attempts, max_attempts,
                        visible_at, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
                    """,
                    (
                        job_id,
                        self.name,
                        job_key,
                        json.dumps(payload, sort_keys=True),
                        JobState.PENDING.value,
                        self.max_attempts,
                        visible_at,
                        now_iso,
                        now_iso,
                    ),
                )
                if cursor.rowcount == 0:
                    row = self.conn.execute(
                        "SELECT job_id FROM jobs WHERE queue_name = ? AND job_key = ?",
                        (self.name, job_key),
                    ).fetchone()
                    job_id = str(row["job_id"])
                    self._insert_event(job_id, "duplicate_ignored", {"job_key": job_key})
                else:
                    self._insert_event(job_id, "enqueued", {"visible_at": visible_at, "job_key": job_key})
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"enqueue failed on {self.db_path}: {exc}") from exc
        return job_id

    def _abandon(self, job_id: str, reclaims: int, now_iso: str) -> None:
        error = f"lease expired {reclaims + 1} times without ack or fail"
        with self.conn:
            cursor = self.conn.execute(
                """
                UPDATE jobs
                SET state = ?, failed_at = ?, updated_at = ?, last_error = ?,
                    locked_by = NULL, lease_expires_at = NULL
                WHERE job_id = ? AND state = ? AND lease_expires_at <= ?
                """,
                (
                    JobState.FAILED_EXHAUSTED.value,
                    now_iso,
                    now_iso,
                    error,
                    job_id,
                    JobState.ACTIVE.value,
                    now_iso,
                ),
            )
            if cursor.rowcount == 1:
                self._insert_event(job_id, "lease_reclaims_exhausted", {"reclaims": reclaims, "error": error})

    def claim(self, worker_name: str) -> ReminderJob | None:
        now = self.clock()
        now_iso = to_utc_iso(now)
        while True:
            row = self.conn.execute(
                f"SELECT job_id, state, reclaims FROM jobs WHERE {_CLAIMABLE} ORDER BY visible_at LIMIT 1",
                (self.name, now_iso, now_iso),
            ).fetchone()
            if row is None:
                return None
            # A job whose holders keep dying mid-send is parked instead of redelivered.
            if row["state"] == JobState.ACTIVE.value and int(row["reclaims"]) >= self.max_reclaims:
                self._abandon(row["job_id"], int(row["reclaims"]), now_iso)
                continue
            break
        job_id = row["job_id"]
        cursor = self.conn.execute(
            f"""
            UPDATE jobs
            SET state = ?, locked_by = ?, lease_expires_at = ?, updated_at = ?,
                reclaims = reclaims + CASE WHEN state = 'active' THEN 1 ELSE 0 END
            WHERE job_id = ? AND {_CLAIMABLE}
            """,
            (
                JobState.ACTIVE.value,
                worker_name,
                to_utc_iso(now + self.lease),
                now_iso,
                job_id,
                self.name,
                now_iso,
                now_iso,
            ),
        )
        self.conn.commit()
        if cursor.rowcount != 1:
            return None
        if row["state"] == JobState.ACTIVE.value:
            self.add_event(
                job_id,
                "lease_expired_reclaimed",
                {"reclaims": int(row["reclaims"]) + 1},
                worker_name=worker_name,
            )
        else:
            self.add_event(job_id, "claimed", worker_name=worker_name)
        return self.get_job(job_id)

    def ack(self, job_id: str, worker_name: str | None = None) -> bool:
        now_iso = self._now_iso()
        query = """
            UPDATE jobs
            SET state = ?, completed_at = ?, updated_at = ?, locked_by = NULL, lease_expires_at = NULL
            WHERE job_id = ? AND state = ?
        """
        values: list[object] = [JobState.COMPLETED.value, now_iso, now_iso, job_id, JobState.ACTIVE.value]
        if worker_name is not None:
            query += " AND locked_by = ?"
            values.append(worker_name)
        cursor = self.conn.execute(query, values)
        self.conn.commit()
        acked = cursor.rowcount == 1
        if acked:
            self.add_event(job_id, "completed", worker_name=worker_name)
        return acked

    def fail(self, job_id: str, attempt: int, error: str, worker_name: str | None = None) -> JobState:
        """Record a failed attempt and return the job's resulting state.

        ``attempt`` is the zero-based attempt that just failed. The job goes
        back to ``pending`` after ``backoff_base * 2**attempt`` or, once
        ``attempt + 1`` reaches the job's attempt ceiling, to ``failed_exhausted``.
        With ``worker_name`` only the current lease holder can fail the job;
        a late report from anyone else leaves it untouched.
        """
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(job_id)
        if job.state is not JobState.ACTIVE:
            return job.state
        if worker_name is not None and job.locked_by != worker_name:
            return job.state

        now = self.clock()
        now_iso = to_utc_iso(now)
        attempts = attempt + 1
        error = error[:MAX_ERROR_LENGTH]
        if attempts >= job.max_attempts:
            new_state = JobState.FAILED_EXHAUSTED
            cursor = self.conn.execute(
                """
                UPDATE jobs
                SET state = ?, attempts = ?, failed_at = ?, updated_at = ?, last_error = ?,
                    locked_by = NULL, lease_expires_at = NULL
                WHERE job_id = ? AND state = ? AND (? IS NULL OR locked_by = ?)
                """,
                (
                    new_state.value,
                    attempts,
                    now_iso,
                    now_iso,
                    error,
                    job_id,
                    JobState.ACTIVE.value,
                    worker_name,
                    worker_name,
                ),
            )
            details: dict[str, Any] = {"attempts": attempts, "error": error}
        else:
            new_state = JobState.PENDING
            visible_at = to_utc_iso(now + backoff_delay(attempt, self.backoff_base))
            cursor = self.conn.execute(
                """
                UPDATE jobs
                SET state = ?, attempts = ?, visible_at = ?, updated_at = ?, last_error = ?,
                    locked_by = NULL, lease_expires_at = NULL
                WHERE job_id = ? AND state = ? AND (? IS NULL OR locked_by = ?)
                """,
                (
                    new_state.value,
                    attempts,
                    visible_at,
                    now_iso,
                    error,
                    job_id,
                    JobState.ACTIVE.value,
                    worker_name,
                    worker_name,
                ),
            )
            details = {"attempts": attempts, "error": error, "visible_at": visible_at}
        self.conn.commit()
        if cursor.rowcount != 1:
            refreshed = self.get_job(job_id)
            return refreshed.state if refreshed else job.state
        self.add_event(
            job_id,
            "exhausted" if new_state is JobState.FAILED_EXHAUSTED else "retry_scheduled",
            details,
            worker_name=worker_name,
        )
        return new_state

    def cancel(self, job_id: str) -> bool:
        now_iso = self._now_iso()
        cursor = self.conn.execute(
            "UPDATE jobs SET state = ?, updated_at = ? WHERE job_id = ? AND state = ?",
            (JobState.CANCELLED.value, now_iso, job_id, JobState.PENDING.value),
        )
        self.conn.commit()
        cancelled = cursor.rowcount == 1
        if cancelled:
            self.add_event(job_id, "cancelled")
        return cancelled

    def get_job(self, job_id: str) -> ReminderJob | None:
        row = self.conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return _row_to_job(row)

    def list_jobs_by_state(self, state: JobState, limit: int = 100) -> list[ReminderJob]:
        rows = self.conn.execute(
            "SELECT * FROM jobs WHERE queue_name = ? AND state = ? ORDER BY visible_at LIMIT ?",
            (self.name, state.value, limit),
        ).fetchall()
        return [_row_to_job(row) for row in rows]

    def summary_counts(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT state, COUNT(*) AS count FROM jobs WHERE queue_name = ? GROUP BY state",
            (self.name,),
        ).fetchall()
        output = {state.value: 0 for state in JobState}
        for row in rows:
            output[str(row["state"])] = int(row["count"])
        return output

    def list_events(self, job_id: str) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT event_type, worker_name, timestamp, details_json
            FROM job_events
            WHERE job_id = ?
            ORDER BY id
            """,
            (job_id,),
        ).fetchall()
        return [
            {
                "event_type": row["event_type"],
                "worker_name": row["worker_name"],
                "timestamp": row["timestamp"],
                "details": json.loads(row["details_json"]),
            }
            for row in rows
        ]
