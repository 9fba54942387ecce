"""
Smart Calendar — Job Queue and Digest Ledger.

The shared job table lets an external trigger enqueue work and
short-lived worker invocations claim it. Claiming is one UPDATE ...
RETURNING statement, so two overlapping workers can never both receive
the same pending job.

The digest ledger records (user, day) pairs that already received a
digest; a UNIQUE constraint rejects a second row for the same pair.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime

from smartcal.data.db import resolve_db_path
from smartcal.data.models import JOB_TYPES, CronJob, DigestLogEntry, JobStatus

logger = logging.getLogger(__name__)


class JobQueueDB:
    """SQLite-backed cron job queue with atomic claim."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = resolve_db_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cron_jobs (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_type     TEXT NOT NULL,
                    status       TEXT NOT NULL DEFAULT 'pending',
                    result       TEXT,
                    error        TEXT,
                    created_at   TEXT NOT NULL,
                    started_at   TEXT,
                    finished_at  TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_cron_jobs_status ON cron_jobs (status, created_at)"
            )
        logger.debug("Job queue initialized at %s", self._db_path)

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> CronJob:
        return CronJob(
            id=row["id"],
            job_type=row["job_type"],
            status=row["status"],
            result=json.loads(row["result"]) if row["result"] else None,
            error=row["error"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )

    def enqueue(self, job_type: str) -> CronJob | None:
        """Add a pending job unless one of the same type is already queued or running.

        Returns the new job, or None when an outstanding job already exists.
        """
        if job_type not in JOB_TYPES:
            raise ValueError(f"Unknown job type: {job_type!r}")

        with self._connect() as conn:
            rows = conn.execute(
                """
                INSERT INTO cron_jobs (job_type, status, created_at)
                SELECT ?, 'pending', ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM cron_jobs
                    WHERE job_type = ? AND status IN ('pending', 'running')
                )
                RETURNING *
                """,
                (job_type, datetime.now().isoformat(), job_type),
            ).fetchall()

        if not rows:
            logger.info("Job '%s' already outstanding, not enqueued", job_type)
            return None
        job = self._row_to_job(rows[0])
        logger.info("Job #%d '%s' enqueued", job.id, job_type)
        return job

    def claim_next(self) -> CronJob | None:
        """Atomically take the oldest pending job and mark it running."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                UPDATE cron_jobs
                SET status = 'running', started_at = ?
                WHERE id = (
                    SELECT id FROM cron_jobs
                    WHERE status = 'pending'
                    ORDER BY created_at, id
                    LIMIT 1
                )
                AND status = 'pending'
                RETURNING *
                """,
                (datetime.now().isoformat(),),
            ).fetchall()

        if not rows:
            return None
        job = self._row_to_job(rows[0])
        logger.info("Job #%d '%s' claimed", job.id, job.job_type)
        return job

    def complete(self, job_id: int, result: dict) -> None:
        self._finish(job_id, JobStatus.COMPLETED, result=json.dumps(result))
        logger.info("Job #%d completed: %s", job_id, result)

    def fail(self, job_id: int, error: str) -> None:
        self._finish(job_id, JobStatus.FAILED, error=error)
        logger.warning("Job #%d failed: %s", job_id, error)

    def _finish(
        self,
        job_id: int,
        status: JobStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE cron_jobs
                SET status = ?, result = ?, error = ?, finished_at = ?
                WHERE id = ? AND status = 'running'
                """,
                (status.value, result, error, datetime.now().isoformat(), job_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"Job {job_id} is not running")

    def get_job(self, job_id: int) -> CronJob | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM cron_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_job(row)


class DigestLedgerDB:
    """Idempotency ledger: one row per (user, day) that received a digest."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = resolve_db_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS digest_log (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     INTEGER NOT NULL,
                    day         TEXT    NOT NULL,
                    channels    TEXT    NOT NULL DEFAULT '[]',
                    created_at  TEXT    NOT NULL,
                    UNIQUE (user_id, day)
                )
            """)

    def load_delivered(self, day: str) -> set[int]:
        """Return the ids of users already served on `day`."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id FROM digest_log WHERE day = ?", (day,)
            ).fetchall()
        return {r["user_id"] for r in rows}

    def is_delivered(self, user_id: int, day: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM digest_log WHERE user_id = ? AND day = ?", (user_id, day)
            ).fetchone()
        return row is not None

    def mark_delivered(self, user_id: int, day: str, channels: list[str]) -> bool:
        """Insert the ledger row. Returns False if (user, day) was already recorded."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO digest_log (user_id, day, channels, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, day) DO NOTHING
                """,
                (user_id, day, json.dumps(channels), datetime.now().isoformat()),
            )
        inserted = cursor.rowcount > 0
        if not inserted:
            logger.warning("Digest ledger already has user #%d on %s", user_id, day)
        return inserted

    def list_entries(self, day: str) -> list[DigestLogEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM digest_log WHERE day = ? ORDER BY id", (day,)
            ).fetchall()
        return [
            DigestLogEntry(
                user_id=r["user_id"],
                day=r["day"],
                channels=json.loads(r["channels"]),
                created_at=r["created_at"],
            )
            for r in rows
        ]
