"""
Smart Calendar — Time & Intent Parser.

Brain of the Capture System: turns one line of free text into a calendar
query, a new-event request, or nothing, using fixed keyword and regex
heuristics (no model calls, fully deterministic).

Dates are expressed as day offsets from the human-today date (see
smartcal.core.clock); the caller resolves them to real dates.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_QUERY_HORIZON_DAYS = 7
MAX_TITLE_LENGTH = 200

# ---------------------------------------------------------------------------
# Shared contract — consumed by the message handler
# ---------------------------------------------------------------------------


class QueryRequest(BaseModel):
    """Request to list events between two day offsets (inclusive).

    Example: "show tomorrow" → {"intent": "query", "range_start_offset_days": 1,
             "range_end_offset_days": 1}
    """
    intent: str = "query"
    range_start_offset_days: int
    range_end_offset_days: int


class CreateRequest(BaseModel):
    """Request to save a new event.

    `date_offset_days` is None when the line had no date keyword; such a
    line cannot be saved (the date is mandatory).
    """
    intent: str = "create"
    date_offset_days: int | None
    time: str | None = None          # HH:MM:SS, 24-hour
    category: str = "task"
    title: str
    person: str | None = None
    location: str | None = None
    priority: str = "medium"
    raw_line: str = ""


class Unrecognized(BaseModel):
    intent: str = "unrecognized"
    raw_line: str = ""


ParseResult = QueryRequest | CreateRequest | Unrecognized


# ---------------------------------------------------------------------------
# Keyword tables (order matters: earlier entries win)
# ---------------------------------------------------------------------------

_QUERY_WORDS_RE = re.compile(r"\b(schedule|next|upcoming|show|list)\b")
_QUERY_EXACT = {"today", "tomorrow", "day after tomorrow", "next 7"}
_NEXT_N_DAYS_RE = re.compile(r"\bnext\s+(\d{1,2})\b")

_DATE_OFFSETS: list[tuple[str, int]] = [
    ("day after tomorrow", 2),
    ("tomorrow", 1),
    ("today", 0),
]

_CATEGORY_KEYWORDS: list[tuple[str, str]] = [
    ("meeting", "meeting"),
    ("flight", "flight"),
    ("hotel", "hotel"),
    ("deadline", "deadline"),
    ("call", "call"),
]
DEFAULT_CATEGORY = "task"

_PRIORITY_KEYWORDS: list[tuple[str, str]] = [
    ("urgent", "urgent"),
    ("asap", "urgent"),
    ("important", "high"),
]

_TIME_PATTERN = r"\b(1[0-2]|0?[1-9])(?::([0-5][0-9]))?\s*(am|pm)\b"
_TIME_RE = re.compile(_TIME_PATTERN, re.IGNORECASE)
_TIME_WITH_PREP_RE = re.compile(r"(?:\b(?:at|by)\s+|@\s*)?" + _TIME_PATTERN, re.IGNORECASE)

_PERSON_RE = re.compile(r"\bwith\s+([A-Za-z][\w'-]*)", re.IGNORECASE)
_PERSON_STOPWORDS = {"a", "an", "the", "my", "our", "your", "team", "everyone"}
_LOCATION_RE = re.compile(r"\b(?:at|in)\s+([A-Z][\w'&.-]*(?:\s+[A-Z][\w'&.-]*)*)")


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def parse_time(text: str) -> str | None:
    """Extract the first 12-hour clock reference as canonical "HH:MM:00".

    "4pm" → "16:00:00", "12:00am" → "00:00:00", "12:30 pm" → "12:30:00".
    A time without an am/pm suffix is ambiguous and is not extracted.
    """
    match = _TIME_RE.search(text)
    if match is None:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = match.group(3).lower()

    if suffix == "am":
        hour = 0 if hour == 12 else hour
    else:
        hour = 12 if hour == 12 else hour + 12

    return f"{hour:02d}:{minute:02d}:00"


def format_12h(time_str: str | None) -> str:
    """Format a 24-hour "HH:MM[:SS]" string as "h:MM AM/PM" ("" for None)."""
    if not time_str:
        return ""
    hour_part, minute_part = time_str.split(":")[:2]
    hour = int(hour_part)
    suffix = "PM" if hour >= 12 else "AM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute_part} {suffix}"


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def resolve_date_offset(text: str) -> int | None:
    """Return 2/1/0 for "day after tomorrow"/"tomorrow"/"today", else None."""
    lowered = text.lower()
    for phrase, offset in _DATE_OFFSETS:
        if phrase in lowered:
            return offset
    return None


def classify_category(text: str) -> str:
    lowered = text.lower()
    for keyword, category in _CATEGORY_KEYWORDS:
        if keyword in lowered:
            return category
    return DEFAULT_CATEGORY


def _has_category_keyword(text: str) -> bool:
    return any(keyword in text for keyword, _ in _CATEGORY_KEYWORDS)


def _classify_priority(text: str) -> str:
    for keyword, priority in _PRIORITY_KEYWORDS:
        if re.search(rf"\b{keyword}\b", text):
            return priority
    return "medium"


def _extract_person(line: str) -> str | None:
    match = _PERSON_RE.search(line)
    if match is None:
        return None
    name = match.group(1)
    if name.lower() in _PERSON_STOPWORDS:
        return None
    return name


def _extract_location(line: str) -> str | None:
    match = _LOCATION_RE.search(line)
    return match.group(1) if match else None


def _build_title(line: str, category: str) -> str:
    """Strip the date phrase and time reference, keep the rest as the title."""
    title = _TIME_WITH_PREP_RE.sub(" ", line)
    for phrase, _ in _DATE_OFFSETS:
        pattern = re.compile(rf"\b(?:on\s+)?{phrase}\b", re.IGNORECASE)
        if pattern.search(title):
            title = pattern.sub(" ", title, count=1)
            break
    title = re.sub(r"\s+", " ", title).strip(" ,.-")
    if not title:
        title = category
    title = title[0].upper() + title[1:]
    return title[:MAX_TITLE_LENGTH]


def _query_range(text: str, horizon_days: int) -> tuple[int, int]:
    for phrase, offset in _DATE_OFFSETS:
        if phrase in text:
            return offset, offset
    match = _NEXT_N_DAYS_RE.search(text)
    if match:
        return 0, int(match.group(1))
    return 0, horizon_days


# ---------------------------------------------------------------------------
# Parser functions
# ---------------------------------------------------------------------------


def parse_line(line: str, horizon_days: int = DEFAULT_QUERY_HORIZON_DAYS) -> ParseResult:
    """Classify and parse a single line of free text.

    Precedence: query keywords win over event keywords, so "today" on its
    own is a query rather than an event.
    """
    original = line.strip()
    text = original.lower()
    bare = text.rstrip("?!. ")

    if not text:
        return Unrecognized(raw_line=original)

    if bare in _QUERY_EXACT or _QUERY_WORDS_RE.search(text):
        start, end = _query_range(text, horizon_days)
        logger.debug("Parsed query for offsets %d..%d: %s", start, end, original[:80])
        return QueryRequest(range_start_offset_days=start, range_end_offset_days=end)

    time_value = parse_time(text)
    if time_value is None and not _has_category_keyword(text):
        return Unrecognized(raw_line=original)

    category = classify_category(text)
    parsed = CreateRequest(
        date_offset_days=resolve_date_offset(text),
        time=time_value,
        category=category,
        title=_build_title(original, category),
        person=_extract_person(original),
        location=_extract_location(original),
        priority=_classify_priority(text),
        raw_line=original,
    )
    logger.debug(
        "Parsed event creation: %s (%s) offset=%s time=%s",
        parsed.title, parsed.category, parsed.date_offset_days, parsed.time,
    )
    return parsed


def parse_message(text: str, horizon_days: int = DEFAULT_QUERY_HORIZON_DAYS) -> list[ParseResult]:
    """Parse a (possibly multi-line) message, one result per non-empty line."""
    return [
        parse_line(line, horizon_days)
        for line in text.splitlines()
        if line.strip()
    ]
