"""
Smart Calendar — Data Models.

The Memory pillar: users, events, scheduled jobs and the digest ledger
persist in SQLite. Dates are ISO strings (YYYY-MM-DD) interpreted in the
owner's human day; times are canonical 24-hour "HH:MM:SS" strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EventCategory(str, Enum):
    FLIGHT = "flight"
    HOTEL = "hotel"
    MEETING = "meeting"
    TASK = "task"
    DEADLINE = "deadline"
    CALL = "call"
    GENERIC = "generic"


class EventStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EventPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


DAILY_DIGEST = "daily_digest"
JOB_TYPES = {DAILY_DIGEST}


@dataclass
class User:
    """A chat user, identified by their channel address.

    Created automatically on the first inbound message from an unknown
    address; never hard-deleted.
    """

    id: int
    address: str                      # chat id / phone number
    display_name: str | None = None
    chat_enabled: bool = True
    email_enabled: bool = False
    email: str | None = None
    created_at: str = ""


@dataclass
class Event:
    """A scheduled item owned by a user."""

    user_id: int
    category: str                     # EventCategory value
    title: str                        # at most 200 chars
    date: str                         # ISO date YYYY-MM-DD
    time: str | None = None           # HH:MM:SS, None for all-day items
    person: str | None = None
    location: str | None = None
    status: str = EventStatus.PENDING.value
    priority: str = EventPriority.MEDIUM.value
    raw_message: str | None = None
    id: int | None = None
    created_at: str = ""
    reminder_at: str | None = None    # naive local ISO timestamp, None = no reminder
    reminder_sent: bool = False


@dataclass
class CronJob:
    """A unit of scheduled work claimed by the digest worker."""

    id: int
    job_type: str
    status: str                       # JobStatus value
    result: dict | None = None
    error: str | None = None
    created_at: str = ""
    started_at: str | None = None
    finished_at: str | None = None


@dataclass
class DigestLogEntry:
    """Ledger row: a digest reached (user, day) on at least one channel."""

    user_id: int
    day: str                          # ISO date YYYY-MM-DD (human day)
    channels: list[str] = field(default_factory=list)
    created_at: str = ""
