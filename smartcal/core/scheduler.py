"""
Smart Calendar — Daily Digest Scheduler.

Two halves:

* the trigger (`enqueue_daily_digest`) drops a `daily_digest` job on the
  shared queue once a day;
* the worker (`DigestWorker.run`) is invoked every minute, claims at most
  one job, checks the delivery window, and sends each active user one
  digest of their upcoming events over every enabled channel.

Channels are independent: a failed chat send does not stop the email,
and one user's failure does not stop the loop. The digest ledger makes
delivery at-most-once per (user, human day) across retries and re-runs.

This module is provider-agnostic: it depends on the store, queue,
ledger, renderer and delivery protocols, not on specific implementations.
"""

from __future__ import annotations

import html
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from itertools import groupby
from typing import TYPE_CHECKING, Awaitable, Callable

from smartcal.core.clock import add_days, format_day, human_today, local_now
from smartcal.core.parser import format_12h
from smartcal.data.models import DAILY_DIGEST
from smartcal.ports.delivery_port import Attachment

if TYPE_CHECKING:
    from smartcal.data.models import CronJob, Event, User
    from smartcal.ports.delivery_port import ChatChannelPort, EmailChannelPort
    from smartcal.ports.event_store_port import EventStorePort
    from smartcal.ports.job_queue_port import DigestLedgerPort, JobQueuePort
    from smartcal.ports.renderer_port import DigestRendererPort

logger = logging.getLogger(__name__)

DIGEST_SUBJECT = "Your Upcoming {days}-Day Schedule"
_SUMMARY_MAX_LINES = 12


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Delivered:
    user_id: int
    channels: tuple[str, ...]


@dataclass(frozen=True)
class Skipped:
    user_id: int
    reason: str


@dataclass(frozen=True)
class Failed:
    user_id: int
    reason: str


UserOutcome = Delivered | Skipped | Failed


@dataclass
class WorkerStatus:
    """What one worker invocation did — for observability, not control flow.

    status: "no_jobs" | "claim_error" | "unknown_job" | "skipped_time_window"
            | "no_users" | "completed" | "worker_failed"
    """

    status: str
    job_id: int | None = None
    result: dict | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DigestArtifact:
    """The per-user digest, built once and shared by every channel."""

    document: Attachment
    summary: str
    html: str
    subject: str
    event_count: int = 0
    counts: dict[str, int] = field(default_factory=dict)


def summarize_outcomes(outcomes: list[UserOutcome], day: date) -> dict:
    """Aggregate per-user outcomes into the job result payload."""
    return {
        "day": day.isoformat(),
        "processed": sum(1 for o in outcomes if isinstance(o, Delivered)),
        "skipped": sum(1 for o in outcomes if isinstance(o, Skipped)),
        "failed": sum(1 for o in outcomes if isinstance(o, Failed)),
    }


# ---------------------------------------------------------------------------
# Window gate
# ---------------------------------------------------------------------------


def in_window(now: datetime, hour: int, tolerance_minutes: int) -> bool:
    """True when `now` is within ± tolerance_minutes of hour:00 on its local clock.

    The tolerance absorbs scheduler jitter: the external trigger does not
    fire at a guaranteed instant.
    """
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    delta = abs((now - target).total_seconds())
    delta = min(delta, 24 * 3600 - delta)  # window may straddle midnight
    return delta <= tolerance_minutes * 60


# ---------------------------------------------------------------------------
# Digest content
# ---------------------------------------------------------------------------


def _category_counts(events: list[Event]) -> dict[str, int]:
    counts = Counter(ev.category for ev in events if not (ev.category == "task" and ev.status == "completed"))
    return dict(sorted(counts.items()))


def build_summary(
    events: list[Event], user_name: str, date_from: date, date_to: date,
) -> str:
    """Short plain-text digest for chat (and the body of the email)."""
    counts = _category_counts(events)
    count_text = ", ".join(
        f"{n} {category}{'s' if n != 1 else ''}" for category, n in counts.items()
    )
    lines = [
        f"Hi {user_name}! Your schedule for {format_day(date_from)} – {format_day(date_to)}:",
        count_text or "nothing planned",
    ]

    shown = 0
    for day, day_events in groupby(events, key=lambda ev: ev.date):
        if shown >= _SUMMARY_MAX_LINES:
            break
        lines.append("")
        lines.append(format_day(day))
        for ev in day_events:
            if shown >= _SUMMARY_MAX_LINES:
                break
            when = format_12h(ev.time) if ev.time else "All day"
            lines.append(f"• {when} {ev.title}")
            shown += 1

    if len(events) > shown:
        lines.append(f"…and {len(events) - shown} more.")
    lines.append("")
    lines.append("The full calendar is attached.")
    return "\n".join(lines)


def build_html(summary: str) -> str:
    paragraphs = summary.split("\n\n")
    body = "".join(
        "<p>" + "<br>".join(html.escape(line) for line in para.splitlines()) + "</p>"
        for para in paragraphs
    )
    return f"<div>{body}</div>"


def build_artifact(
    renderer: DigestRendererPort,
    events: list[Event],
    user_name: str,
    date_from: date,
    date_to: date,
    horizon_days: int,
) -> DigestArtifact:
    document = renderer.render_digest(
        events, user_name, date_from.isoformat(), date_to.isoformat(),
    )
    summary = build_summary(events, user_name, date_from, date_to)
    return DigestArtifact(
        document=Attachment(
            filename=renderer.filename,
            content=document,
            mime_type=renderer.mime_type,
        ),
        summary=summary,
        html=build_html(summary),
        subject=DIGEST_SUBJECT.format(days=horizon_days),
        event_count=len(events),
        counts=_category_counts(events),
    )


# ---------------------------------------------------------------------------
# Trigger
# ---------------------------------------------------------------------------


def enqueue_daily_digest(queue: JobQueuePort) -> CronJob | None:
    """Scheduler trigger: queue today's digest job (no-op if one is outstanding)."""
    return queue.enqueue(DAILY_DIGEST)


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class DigestWorker:
    """Claims one queued job per invocation and delivers the daily digests."""

    def __init__(
        self,
        events: EventStorePort,
        queue: JobQueuePort,
        ledger: DigestLedgerPort,
        renderer: DigestRendererPort,
        chat: ChatChannelPort | None = None,
        email: EmailChannelPort | None = None,
        tz_name: str | None = None,
        rollover_hour: int | None = None,
        digest_hour: int | None = None,
        window_minutes: int | None = None,
        horizon_days: int | None = None,
    ) -> None:
        from smartcal.config import settings

        self._events = events
        self._queue = queue
        self._ledger = ledger
        self._renderer = renderer
        self._chat = chat
        self._email = email
        self._tz_name = tz_name or settings.TIMEZONE
        self._rollover_hour = settings.DAY_ROLLOVER_HOUR if rollover_hour is None else rollover_hour
        self._digest_hour = settings.DIGEST_HOUR if digest_hour is None else digest_hour
        self._window_minutes = settings.DIGEST_WINDOW_MINUTES if window_minutes is None else window_minutes
        self._horizon_days = settings.DIGEST_HORIZON_DAYS if horizon_days is None else horizon_days

    async def run(self, now: datetime | None = None) -> WorkerStatus:
        """Process at most one job. Never raises; always returns a status."""
        try:
            job = self._queue.claim_next()
        except Exception as exc:
            logger.error("Job claim failed: %s", exc)
            return WorkerStatus(status="claim_error", error=str(exc))

        if job is None:
            return WorkerStatus(status="no_jobs")

        try:
            return await self._run_job(job, now)
        except Exception as exc:
            logger.exception("Digest worker crashed on job #%d", job.id)
            try:
                self._queue.fail(job.id, str(exc) or "worker_crash")
            except Exception as fail_exc:
                logger.error("Could not mark job #%d failed: %s", job.id, fail_exc)
            return WorkerStatus(status="worker_failed", job_id=job.id, error=str(exc))

    async def _run_job(self, job: CronJob, now: datetime | None) -> WorkerStatus:
        if job.job_type != DAILY_DIGEST:
            error = f"unknown_job_type_{job.job_type}"
            self._queue.fail(job.id, error)
            return WorkerStatus(status="unknown_job", job_id=job.id, error=error)

        current = local_now(self._tz_name, now)
        if not in_window(current, self._digest_hour, self._window_minutes):
            result = {
                "skipped": True,
                "reason": f"outside_window_{self._digest_hour:02d}:00",
                "at": current.isoformat(),
            }
            self._queue.complete(job.id, result)
            logger.info("Job #%d skipped: %s is outside the digest window", job.id, current.strftime("%H:%M"))
            return WorkerStatus(status="skipped_time_window", job_id=job.id, result=result)

        users = self._events.list_active_users()
        if not users:
            result = {"processed": 0, "reason": "no_users"}
            self._queue.complete(job.id, result)
            return WorkerStatus(status="no_users", job_id=job.id, result=result)

        today = human_today(self._rollover_hour, self._tz_name, current)
        delivered = self._ledger.load_delivered(today.isoformat())

        outcomes: list[UserOutcome] = []
        for user in users:
            if user.id in delivered:
                outcomes.append(Skipped(user.id, "already_delivered"))
                continue
            outcome = await self._process_user(user, today)
            if isinstance(outcome, Delivered):
                delivered.add(user.id)
            outcomes.append(outcome)

        result = summarize_outcomes(outcomes, today)
        self._queue.complete(job.id, result)
        logger.info("Digest job #%d done: %s", job.id, result)
        return WorkerStatus(status="completed", job_id=job.id, result=result)

    async def _process_user(self, user: User, today: date) -> UserOutcome:
        """Build and send one user's digest. Errors stay inside this user."""
        try:
            channels = self._enabled_channels(user)
            if not channels:
                return Skipped(user.id, "no_channel")

            date_from = today
            date_to = add_days(today, self._horizon_days)
            events = self._events.query_events(user.id, date_from.isoformat(), date_to.isoformat())
            if not events:
                return Skipped(user.id, "no_events")

            artifact = build_artifact(
                self._renderer, events, user.display_name or "there",
                date_from, date_to, self._horizon_days,
            )

            succeeded: list[str] = []
            for name, send in channels:
                if await self._attempt(user, name, today, send, artifact):
                    succeeded.append(name)

            if not succeeded:
                return Failed(user.id, "all_channels_failed")

            self._ledger.mark_delivered(user.id, today.isoformat(), succeeded)
            return Delivered(user.id, tuple(succeeded))
        except Exception as exc:
            logger.error("Digest failed for user #%d: %s", user.id, exc)
            return Failed(user.id, str(exc))

    def _enabled_channels(
        self, user: User,
    ) -> list[tuple[str, Callable[[DigestArtifact], Awaitable[str]]]]:
        channels: list[tuple[str, Callable[[DigestArtifact], Awaitable[str]]]] = []

        if user.chat_enabled and user.address and self._chat is not None:
            chat = self._chat

            async def _send_chat(artifact: DigestArtifact) -> str:
                return await chat.send_chat_message(user.address, artifact.summary, artifact.document)

            channels.append(("chat", _send_chat))

        if user.email_enabled and user.email and self._email is not None:
            email = self._email

            async def _send_email(artifact: DigestArtifact) -> str:
                return await email.send_email(user.email, artifact.subject, artifact.html, artifact.document)

            channels.append(("email", _send_email))

        return channels

    async def _attempt(
        self,
        user: User,
        name: str,
        today: date,
        send: Callable[[DigestArtifact], Awaitable[str]],
        artifact: DigestArtifact,
    ) -> bool:
        """Try one channel; record the attempt either way."""
        try:
            message_id = await send(artifact)
        except Exception as exc:
            logger.warning("Digest %s delivery failed for user #%d: %s", name, user.id, exc)
            self._record(user.id, f"digest_failed_{name}", {
                "success": False, "day": today.isoformat(), "error": str(exc),
            })
            return False

        logger.info("Digest sent to user #%d via %s", user.id, name)
        self._record(user.id, f"digest_sent_{name}", {
            "success": True, "day": today.isoformat(), "message_id": message_id,
        })
        return True

    def _record(self, user_id: int, action: str, metadata: dict) -> None:
        try:
            self._events.log_activity(user_id, action, metadata)
        except Exception as exc:
            logger.warning("Failed to log activity '%s' for user #%d: %s", action, user_id, exc)
