"""
Smart Calendar — Message Handler.

One pass per inbound chat message:

    received → user resolved → intent classified → query / create / no-op → reply

There is no retry inside a message. Whatever happens, the caller gets a
well-formed Reply: internal errors become a generic apology rather than
raw error text, because the chat channel expects an answer to every
message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from itertools import groupby
from typing import TYPE_CHECKING

from smartcal.core.clock import add_days, format_day, human_today
from smartcal.core.parser import CreateRequest, QueryRequest, format_12h, parse_message
from smartcal.data.models import Event, User

if TYPE_CHECKING:
    from smartcal.ports.event_store_port import EventStorePort
    from smartcal.ports.rate_limit_port import RateLimitPort

logger = logging.getLogger(__name__)

USAGE_HINT = (
    "I couldn't find an event or a question in your message.\n"
    "Try something like:\n"
    "• meeting tomorrow 4pm with Raj\n"
    "• flight day after tomorrow 7:30am\n"
    "• today / tomorrow / show my schedule"
)
DATE_REQUIRED_HINT = "a date is required — add today, tomorrow or day after tomorrow"
APOLOGY = "Sorry, something went wrong on our side. Please try again in a moment."
RATE_LIMITED = "You're sending messages too quickly. Please wait a minute and try again."

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class Reply:
    """Chat reply produced for one inbound message."""

    text: str
    kind: str   # "query" | "created" | "date_required" | "hint" | "rate_limited" | "error"


class MessageHandler:
    """Turns inbound chat text into stored events or schedule replies."""

    def __init__(
        self,
        events: EventStorePort,
        rate_limiter: RateLimitPort | None = None,
        rollover_hour: int | None = None,
        tz_name: str | None = None,
        horizon_days: int | None = None,
        reminder_lead_minutes: int | None = None,
    ) -> None:
        if None in (rollover_hour, tz_name, horizon_days, reminder_lead_minutes):
            from smartcal.config import settings
            rollover_hour = settings.DAY_ROLLOVER_HOUR if rollover_hour is None else rollover_hour
            tz_name = settings.TIMEZONE if tz_name is None else tz_name
            horizon_days = settings.DIGEST_HORIZON_DAYS if horizon_days is None else horizon_days
            if reminder_lead_minutes is None:
                reminder_lead_minutes = settings.REMINDER_LEAD_MINUTES

        self._events = events
        self._rate_limiter = rate_limiter
        self._rollover_hour = rollover_hour
        self._tz_name = tz_name
        self._horizon_days = horizon_days
        self._reminder_lead = timedelta(minutes=reminder_lead_minutes)

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    def handle(
        self,
        address: str,
        text: str,
        display_name: str | None = None,
        now: datetime | None = None,
    ) -> Reply:
        """Process one inbound message and return the reply to send back."""
        try:
            return self._handle(address, text, display_name, now)
        except Exception as exc:
            logger.error("Message handling failed for %s: %s", address, exc)
            return Reply(text=APOLOGY, kind="error")

    def _handle(
        self,
        address: str,
        text: str,
        display_name: str | None,
        now: datetime | None,
    ) -> Reply:
        user = self._events.find_user(address)
        message_id = self._events.log_message(address, text, user.id if user else None)

        if self._rate_limiter is not None and not self._rate_limiter.hit(address).allowed:
            return Reply(text=RATE_LIMITED, kind="rate_limited")

        if user is None:
            user = self._events.create_user(address, display_name)
            self._events.set_message_user(message_id, user.id)
        today = human_today(self._rollover_hour, self._tz_name, now)

        results = parse_message(text, self._horizon_days)
        creates = [r for r in results if isinstance(r, CreateRequest)]
        queries = [r for r in results if isinstance(r, QueryRequest)]

        if creates:
            return self._create_events(user, creates, today)
        if queries:
            return self._run_query(user, queries[0], today)

        logger.info("No actionable content from %s: %s", address, text[:80])
        return Reply(text=USAGE_HINT, kind="hint")

    def _resolve_user(self, address: str, display_name: str | None) -> User:
        user = self._events.find_user(address)
        if user is None:
            user = self._events.create_user(address, display_name)
        return user

    # -----------------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------------

    def _create_events(
        self, user: User, creates: list[CreateRequest], today: date,
    ) -> Reply:
        saved: list[Event] = []
        skipped: list[str] = []

        for parsed in creates:
            if parsed.date_offset_days is None:
                skipped.append(parsed.raw_line)
                continue
            event_date = add_days(today, parsed.date_offset_days)
            event = Event(
                user_id=user.id,
                category=parsed.category,
                title=parsed.title,
                date=event_date.isoformat(),
                time=parsed.time,
                person=parsed.person,
                location=parsed.location,
                priority=parsed.priority,
                raw_message=parsed.raw_line,
                reminder_at=self._reminder_at(event_date, parsed.time),
            )
            saved.append(self._events.insert_event(event))

        logger.info(
            "User #%d: %d event(s) saved, %d line(s) skipped",
            user.id, len(saved), len(skipped),
        )
        return Reply(
            text=_render_created(saved, skipped),
            kind="created" if saved else "date_required",
        )

    def _reminder_at(self, event_date: date, event_time: str | None) -> str | None:
        """Local timestamp for the chat reminder; all-day items get none."""
        if event_time is None:
            return None
        start = datetime.combine(event_date, time.fromisoformat(event_time))
        return (start - self._reminder_lead).isoformat(timespec="seconds")

    # -----------------------------------------------------------------------
    # Query
    # -----------------------------------------------------------------------

    def _run_query(self, user: User, query: QueryRequest, today: date) -> Reply:
        date_from = add_days(today, query.range_start_offset_days)
        date_to = add_days(today, query.range_end_offset_days)
        events = self._events.query_events(user.id, date_from.isoformat(), date_to.isoformat())
        label = _range_label(query, date_from, date_to)

        logger.info("User #%d queried %s..%s: %d event(s)", user.id, date_from, date_to, len(events))
        if not events:
            return Reply(text=f"No events found for {label}.", kind="query")
        return Reply(text=_render_schedule(events, label), kind="query")

    # -----------------------------------------------------------------------
    # Preferences (chat commands)
    # -----------------------------------------------------------------------

    def set_email(self, address: str, email: str, display_name: str | None = None) -> Reply:
        """Store an email address for digest delivery."""
        email = email.strip()
        if not _EMAIL_RE.match(email):
            return Reply(text="That doesn't look like an email address. Usage: /email you@example.com", kind="hint")
        try:
            user = self._resolve_user(address, display_name)
            self._events.set_email(user.id, email)
        except Exception as exc:
            logger.error("Failed to set email for %s: %s", address, exc)
            return Reply(text=APOLOGY, kind="error")
        return Reply(text=f"✅ Daily digests will also be emailed to {email}.", kind="created")

    def set_digest(self, address: str, enabled: bool, display_name: str | None = None) -> Reply:
        """Turn the daily digest on or off for every channel of the user."""
        try:
            user = self._resolve_user(address, display_name)
            self._events.set_channels(
                user.id,
                chat_enabled=enabled,
                email_enabled=enabled and bool(user.email),
            )
        except Exception as exc:
            logger.error("Failed to update digest preference for %s: %s", address, exc)
            return Reply(text=APOLOGY, kind="error")
        state = "on" if enabled else "off"
        return Reply(text=f"✅ Daily digest turned {state}.", kind="created")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _describe_event(event: Event) -> str:
    when = format_day(event.date)
    if event.time:
        when += f" at {format_12h(event.time)}"
    return f"• {event.title} — {when} ({event.category})"


def _render_created(saved: list[Event], skipped: list[str]) -> str:
    parts: list[str] = []
    if saved:
        noun = "event" if len(saved) == 1 else "events"
        lines = [f"✅ Saved {len(saved)} {noun}:"]
        lines.extend(_describe_event(ev) for ev in saved)
        parts.append("\n".join(lines))
    if skipped:
        lines = [f"⚠️ Not saved ({DATE_REQUIRED_HINT}):"]
        lines.extend(f"• {line}" for line in skipped)
        parts.append("\n".join(lines))
    return "\n\n".join(parts)


def _range_label(query: QueryRequest, date_from: date, date_to: date) -> str:
    if date_from == date_to:
        offset = query.range_start_offset_days
        if offset == 0:
            return "today"
        if offset == 1:
            return "tomorrow"
        return format_day(date_from)
    return f"{format_day(date_from)} – {format_day(date_to)}"


def _render_schedule(events: list[Event], label: str) -> str:
    """Group events by date into a flat, chat-friendly list."""
    lines = [f"📅 Your schedule for {label}:"]
    for day, day_events in groupby(events, key=lambda ev: ev.date):
        lines.append("")
        lines.append(format_day(day))
        for ev in day_events:
            when = format_12h(ev.time) if ev.time else "All day"
            lines.append(f"• {when} {ev.title}")
    return "\n".join(lines)
