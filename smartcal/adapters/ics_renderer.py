"""iCalendar digest renderer — implements DigestRendererPort.

The digest document is a standard .ics file: one VEVENT per upcoming
event, so recipients can open it in any calendar app. Timed events get a
start in the configured time zone and a default one-hour length;
all-day items get a date-only start.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from icalendar import Calendar as iCalendar
from icalendar import Event as iEvent

from smartcal.data.models import Event

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "pending": "TENTATIVE",
    "confirmed": "CONFIRMED",
    "completed": "CONFIRMED",
    "cancelled": "CANCELLED",
}

# RFC 5545 priority: 1 = highest, 9 = lowest
_PRIORITY_MAP = {"urgent": 1, "high": 3, "medium": 5, "low": 9}


class ICalendarRenderer:
    """Renders a user's upcoming events as an iCalendar document."""

    filename = "schedule.ics"
    mime_type = "text/calendar"

    def __init__(self, tz_name: str | None = None, default_duration_minutes: int = 60) -> None:
        if tz_name is None:
            from smartcal.config import settings
            tz_name = settings.TIMEZONE
        self._tz = ZoneInfo(tz_name)
        self._duration = timedelta(minutes=default_duration_minutes)

    def render_digest(
        self, events: list[Event], user_name: str, date_from: str, date_to: str
    ) -> bytes:
        cal = iCalendar()
        cal.add("prodid", "-//Smart Calendar//Daily Digest//EN")
        cal.add("version", "2.0")
        cal.add("x-wr-calname", f"{user_name}: {date_from} to {date_to}")

        stamp = datetime.now(timezone.utc)
        for ev in events:
            cal.add_component(self._build_vevent(ev, stamp))

        logger.debug("Rendered digest with %d event(s) for %s", len(events), user_name)
        return cal.to_ical()

    def _build_vevent(self, ev: Event, stamp: datetime) -> iEvent:
        vevent = iEvent()
        vevent.add("uid", f"smartcal-event-{ev.id}" if ev.id is not None else str(uuid.uuid4()))
        vevent.add("dtstamp", stamp)
        vevent.add("summary", ev.title)

        day = date.fromisoformat(ev.date)
        if ev.time:
            start = datetime.combine(day, time.fromisoformat(ev.time), tzinfo=self._tz)
            vevent.add("dtstart", start)
            vevent.add("dtend", start + self._duration)
        else:
            vevent.add("dtstart", day)
            vevent.add("dtend", day + timedelta(days=1))

        vevent.add("categories", [ev.category])
        vevent.add("status", _STATUS_MAP.get(ev.status, "TENTATIVE"))
        vevent.add("priority", _PRIORITY_MAP.get(ev.priority, 5))
        if ev.location:
            vevent.add("location", ev.location)

        details = [f"Category: {ev.category}", f"Priority: {ev.priority}"]
        if ev.person:
            details.append(f"With: {ev.person}")
        vevent.add("description", "\n".join(details))
        return vevent
