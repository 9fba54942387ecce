"""Clock/Calendar adapter — the "human day" convention.

A day does not roll over at midnight but at an early-morning hour
(default 05:00 local): someone chatting at 00:30 is still in "yesterday".
All date math in the parser, message handler and digest worker goes
through this module instead of reading the raw calendar date.

No I/O: given `now`, every function here is deterministic.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

DEFAULT_ROLLOVER_HOUR = 5


def _zone(tz_name: str | None) -> ZoneInfo:
    if tz_name is None:
        from smartcal.config import settings
        tz_name = settings.TIMEZONE
    return ZoneInfo(tz_name)


def local_now(tz_name: str | None = None, now: datetime | None = None) -> datetime:
    """Return the current time as an aware datetime in the configured time zone.

    Args:
        tz_name: IANA zone name; defaults to settings.TIMEZONE.
        now: Reference instant. Naive values are taken to already be local.
    """
    tz = _zone(tz_name)
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def human_today(
    rollover_hour: int = DEFAULT_ROLLOVER_HOUR,
    tz_name: str | None = None,
    now: datetime | None = None,
) -> date:
    """Return the current local date under the human-day rule.

    Local times strictly before `rollover_hour` are attributed to the
    previous calendar date: 04:59 belongs to yesterday, 05:00 to today.
    """
    current = local_now(tz_name, now)
    if current.hour < rollover_hour:
        return current.date() - timedelta(days=1)
    return current.date()


def add_days(day: date, n: int) -> date:
    return day + timedelta(days=n)


def format_day(day: date | str) -> str:
    """Format a date for chat replies, e.g. "Fri, Jan 10"."""
    if isinstance(day, str):
        day = date.fromisoformat(day)
    return day.strftime("%a, %b %d")
