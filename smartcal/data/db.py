"""
Smart Calendar — Event Database.

The Memory pillar: users, events and the inbound audit trail persist in
SQLite across restarts. Every write that must be safe under concurrent
callers (user resolution, rate-limit counting) is a single atomic SQL
statement rather than a read-then-write pair in Python.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from smartcal.data.models import Event, EventCategory, EventPriority, EventStatus, User

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]:[0-5][0-9]$")


def resolve_db_path(db_path: str | None) -> str:
    if db_path is None:
        from smartcal.config import settings
        db_path = settings.DATABASE_PATH
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return db_path


class EventDB:
    """SQLite-backed storage for users, events, and message/activity logs."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = resolve_db_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    address        TEXT    NOT NULL UNIQUE,
                    display_name   TEXT,
                    chat_enabled   INTEGER NOT NULL DEFAULT 1,
                    email_enabled  INTEGER NOT NULL DEFAULT 0,
                    email          TEXT,
                    created_at     TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      INTEGER NOT NULL REFERENCES users(id),
                    category     TEXT    NOT NULL,
                    title        TEXT    NOT NULL,
                    date         TEXT    NOT NULL,
                    time         TEXT,
                    person       TEXT,
                    location     TEXT,
                    status       TEXT    NOT NULL DEFAULT 'pending',
                    priority     TEXT    NOT NULL DEFAULT 'medium',
                    raw_message  TEXT,
                    created_at   TEXT    NOT NULL,
                    reminder_at  TEXT,
                    reminder_sent INTEGER NOT NULL DEFAULT 0
                )
            """)
            # Migrate existing DBs: add reminder columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(events)").fetchall()
            }
            if "reminder_at" not in existing_cols:
                conn.execute("ALTER TABLE events ADD COLUMN reminder_at TEXT")
            if "reminder_sent" not in existing_cols:
                conn.execute(
                    "ALTER TABLE events ADD COLUMN reminder_sent INTEGER NOT NULL DEFAULT 0"
                )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_user_date ON events (user_id, date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_reminder ON events (reminder_sent, reminder_at)"
            )
            conn.execute("""
                CREATE TABLE IF NOT EXISTS message_log (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    address     TEXT NOT NULL,
                    user_id     INTEGER,
                    body        TEXT NOT NULL,
                    created_at  TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activity_logs (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     INTEGER NOT NULL,
                    action      TEXT    NOT NULL,
                    metadata    TEXT    NOT NULL DEFAULT '{}',
                    created_at  TEXT    NOT NULL
                )
            """)
        logger.debug("Event tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            address=row["address"],
            display_name=row["display_name"],
            chat_enabled=bool(row["chat_enabled"]),
            email_enabled=bool(row["email_enabled"]),
            email=row["email"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            user_id=row["user_id"],
            category=row["category"],
            title=row["title"],
            date=row["date"],
            time=row["time"],
            person=row["person"],
            location=row["location"],
            status=row["status"],
            priority=row["priority"],
            raw_message=row["raw_message"],
            created_at=row["created_at"],
            reminder_at=row["reminder_at"],
            reminder_sent=bool(row["reminder_sent"]),
        )

    # -- users --------------------------------------------------------------

    def find_user(self, address: str) -> User | None:
        """Fetch a user by channel address."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE address = ?", (address,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def create_user(self, address: str, display_name: str | None = None) -> User:
        """Return the user for `address`, creating it if absent.

        The insert is an upsert on the unique address, so two concurrent
        first messages from the same sender resolve to the same row.
        """
        now = datetime.now().isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (address, display_name, chat_enabled, email_enabled, created_at)
                VALUES (?, ?, 1, 0, ?)
                ON CONFLICT(address) DO NOTHING
                """,
                (address, display_name, now),
            )
            created = cursor.rowcount > 0
            row = conn.execute(
                "SELECT * FROM users WHERE address = ?", (address,)
            ).fetchone()

        user = self._row_to_user(row)
        if created:
            logger.info("User registered: #%d %s", user.id, address)
        return user

    def set_email(self, user_id: int, email: str) -> None:
        """Store an email address and enable the email channel."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET email = ?, email_enabled = 1 WHERE id = ?",
                (email.strip(), user_id),
            )
        logger.info("Email set for user #%d", user_id)

    def set_channels(
        self,
        user_id: int,
        chat_enabled: bool | None = None,
        email_enabled: bool | None = None,
    ) -> None:
        """Toggle per-channel digest delivery; None leaves a flag unchanged."""
        updates: list[str] = []
        params: list = []
        if chat_enabled is not None:
            updates.append("chat_enabled = ?")
            params.append(int(chat_enabled))
        if email_enabled is not None:
            updates.append("email_enabled = ?")
            params.append(int(email_enabled))
        if not updates:
            return
        params.append(user_id)
        with self._connect() as conn:
            conn.execute(f"UPDATE users SET {', '.join(updates)} WHERE id = ?", params)
        logger.info(
            "Channels updated for user #%d: chat=%s email=%s",
            user_id, chat_enabled, email_enabled,
        )

    def list_active_users(self) -> list[User]:
        """Return users with at least one delivery channel enabled."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM users WHERE chat_enabled = 1 OR email_enabled = 1 ORDER BY id"
            ).fetchall()
        return [self._row_to_user(r) for r in rows]

    # -- events -------------------------------------------------------------

    @staticmethod
    def _validate_event(event: Event) -> None:
        date.fromisoformat(event.date)  # raises ValueError on a bad/missing date
        if event.time is not None and not _TIME_RE.match(event.time):
            raise ValueError(f"Invalid event time: {event.time!r}")
        if event.category not in {c.value for c in EventCategory}:
            raise ValueError(f"Unknown event category: {event.category!r}")
        if event.status not in {s.value for s in EventStatus}:
            raise ValueError(f"Unknown event status: {event.status!r}")
        if event.priority not in {p.value for p in EventPriority}:
            raise ValueError(f"Unknown event priority: {event.priority!r}")
        if event.reminder_at is not None:
            datetime.fromisoformat(event.reminder_at)

    def insert_event(self, event: Event) -> Event:
        """Insert a new event and return it with its id and created_at set."""
        self._validate_event(event)
        event.title = event.title[:200]
        now = datetime.now().isoformat()

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events
                    (user_id, category, title, date, time, person, location,
                     status, priority, raw_message, created_at,
                     reminder_at, reminder_sent)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.user_id, event.category, event.title, event.date,
                    event.time, event.person, event.location, event.status,
                    event.priority, event.raw_message, now,
                    event.reminder_at, int(event.reminder_sent),
                ),
            )
            event.id = cursor.lastrowid

        event.created_at = now
        logger.info(
            "Event added: #%d '%s' (%s) on %s for user #%d",
            event.id, event.title, event.category, event.date, event.user_id,
        )
        return event

    def query_events(
        self,
        user_id: int,
        date_from: str,
        date_to: str,
        include_cancelled: bool = False,
    ) -> list[Event]:
        """Return a user's events in [date_from, date_to], ordered by (date, time).

        All-day events (no time) sort first within their day.
        """
        query = "SELECT * FROM events WHERE user_id = ? AND date >= ? AND date <= ?"
        params: list = [user_id, date_from, date_to]
        if not include_cancelled:
            query += " AND status != 'cancelled'"
        query += " ORDER BY date, time IS NOT NULL, time, id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_event(r) for r in rows]

    # -- reminders ----------------------------------------------------------

    def list_due_reminders(self, now_local: str, limit: int = 20) -> list[Event]:
        """Return unsent reminders with reminder_at <= now_local, oldest first.

        `now_local` is a naive local ISO timestamp, the same form as the
        stored reminder_at values.
        """
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events
                WHERE reminder_sent = 0
                  AND reminder_at IS NOT NULL
                  AND reminder_at <= ?
                  AND status != 'cancelled'
                ORDER BY reminder_at, id
                LIMIT ?
                """,
                (now_local, limit),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def mark_reminder_sent(self, event_id: int) -> bool:
        """Flag an event's reminder as sent. Returns False if it already was."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE events SET reminder_sent = 1 WHERE id = ? AND reminder_sent = 0",
                (event_id,),
            )
        return cursor.rowcount > 0

    # -- audit / activity ---------------------------------------------------

    def log_message(self, address: str, body: str, user_id: int | None = None) -> int:
        """Record a raw inbound message, whatever it turns out to contain.

        Returns the log row id so the sender can be attached once resolved.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO message_log (address, user_id, body, created_at) VALUES (?, ?, ?, ?)",
                (address, user_id, body, datetime.now().isoformat()),
            )
        return cursor.lastrowid

    def set_message_user(self, message_id: int, user_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE message_log SET user_id = ? WHERE id = ?", (user_id, message_id)
            )

    def list_messages(self, address: str | None = None) -> list[dict]:
        query = "SELECT * FROM message_log"
        params: list = []
        if address is not None:
            query += " WHERE address = ?"
            params.append(address)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(r) for r in rows]

    def log_activity(self, user_id: int, action: str, metadata: dict | None = None) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO activity_logs (user_id, action, metadata, created_at) VALUES (?, ?, ?, ?)",
                (user_id, action, json.dumps(metadata or {}), datetime.now().isoformat()),
            )

    def list_activity(self, user_id: int) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM activity_logs WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return [
            {**dict(r), "metadata": json.loads(r["metadata"])}
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Shared rate-limit counter
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    retry_after: float | None = None


class RateLimitDB:
    """Fixed-window request counter shared by every process using the DB.

    Each hit is one upsert that either increments the key's counter or
    resets it when a new window has started.
    """

    def __init__(
        self,
        db_path: str | None = None,
        max_requests: int | None = None,
        window_seconds: int | None = None,
    ) -> None:
        if max_requests is None or window_seconds is None:
            from smartcal.config import settings
            max_requests = settings.RATE_LIMIT_MAX_REQUESTS if max_requests is None else max_requests
            window_seconds = settings.RATE_LIMIT_WINDOW_SECONDS if window_seconds is None else window_seconds

        self._db_path = resolve_db_path(db_path)
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS rate_limits (
                    key           TEXT    PRIMARY KEY,
                    window_start  INTEGER NOT NULL,
                    count         INTEGER NOT NULL
                )
            """)

    def hit(self, key: str, now: float | None = None) -> RateLimitResult:
        """Count one request for `key` and report whether it is allowed."""
        if self._max_requests <= 0 or self._window_seconds <= 0:
            return RateLimitResult(allowed=True, count=0)

        current = time.time() if now is None else now
        window_start = int(current // self._window_seconds) * self._window_seconds

        with self._connect() as conn:
            rows = conn.execute(
                """
                INSERT INTO rate_limits (key, window_start, count) VALUES (?, ?, 1)
                ON CONFLICT(key) DO UPDATE SET
                    count = CASE WHEN rate_limits.window_start = excluded.window_start
                                 THEN rate_limits.count + 1 ELSE 1 END,
                    window_start = excluded.window_start
                RETURNING count
                """,
                (key, window_start),
            ).fetchall()

        count = rows[0]["count"]
        if count > self._max_requests:
            retry_after = window_start + self._window_seconds - current
            logger.warning("Rate limit exceeded for %s (%d requests)", key, count)
            return RateLimitResult(allowed=False, count=count, retry_after=max(0.0, retry_after))
        return RateLimitResult(allowed=True, count=count)
