"""Tests for smartcal.core.message_handler — inbound message flow.

Uses real SQLite stores (temp file) and a fixed `now`, so human-today is
2025-01-10 throughout.
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from smartcal.core.message_handler import (
    APOLOGY,
    RATE_LIMITED,
    USAGE_HINT,
    MessageHandler,
)
from smartcal.data.db import RateLimitDB
from smartcal.data.models import Event

TZ = "Asia/Kolkata"
# 02:00 on the 11th is still the human day of the 10th
NOW = datetime(2025, 1, 11, 2, 0)


@pytest.fixture
def handler(event_db):
    return MessageHandler(event_db, rollover_hour=5, tz_name=TZ, horizon_days=7)


class TestCreate:
    def test_meeting_tomorrow_saved(self, handler, event_db):
        reply = handler.handle("12345", "meeting tomorrow 4pm with Raj", "Asha", now=NOW)

        assert reply.kind == "created"
        user = event_db.find_user("12345")
        events = event_db.query_events(user.id, "2025-01-01", "2025-12-31")
        assert len(events) == 1
        ev = events[0]
        assert ev.date == "2025-01-11"
        assert ev.time == "16:00:00"
        assert ev.category == "meeting"
        assert ev.title == "Meeting with Raj"
        assert ev.person == "Raj"
        assert ev.raw_message == "meeting tomorrow 4pm with Raj"
        assert "Saved 1 event" in reply.text
        assert "Sat, Jan 11 at 4:00 PM" in reply.text

    def test_timed_event_gets_reminder(self, handler, event_db):
        handler.handle("12345", "meeting tomorrow 4pm with Raj", now=NOW)

        user = event_db.find_user("12345")
        ev = event_db.query_events(user.id, "2025-01-11", "2025-01-11")[0]
        assert ev.reminder_at == "2025-01-11T15:30:00"
        assert ev.reminder_sent is False

    def test_all_day_event_has_no_reminder(self, handler, event_db):
        handler.handle("12345", "call mom tomorrow", now=NOW)

        user = event_db.find_user("12345")
        ev = event_db.query_events(user.id, "2025-01-11", "2025-01-11")[0]
        assert ev.reminder_at is None

    def test_reminder_lead_is_configurable(self, event_db):
        handler = MessageHandler(
            event_db, rollover_hour=5, tz_name=TZ, horizon_days=7, reminder_lead_minutes=0,
        )
        handler.handle("12345", "flight tomorrow 7:30am", now=NOW)

        user = event_db.find_user("12345")
        ev = event_db.query_events(user.id, "2025-01-11", "2025-01-11")[0]
        assert ev.reminder_at == "2025-01-11T07:30:00"

    def test_flight_without_date_not_saved(self, handler, event_db):
        reply = handler.handle("12345", "flight", now=NOW)

        assert reply.kind == "date_required"
        assert "date is required" in reply.text
        user = event_db.find_user("12345")
        assert event_db.query_events(user.id, "2000-01-01", "2100-01-01") == []

    def test_multi_line_partial(self, handler, event_db):
        reply = handler.handle(
            "12345",
            "call mom today 6pm\nflight\nhotel day after tomorrow",
            now=NOW,
        )

        assert reply.kind == "created"
        assert "Saved 2 events" in reply.text
        assert "Not saved" in reply.text
        assert "• flight" in reply.text

        user = event_db.find_user("12345")
        dates = [e.date for e in event_db.query_events(user.id, "2025-01-01", "2025-12-31")]
        assert dates == ["2025-01-10", "2025-01-12"]


class TestQuery:
    def test_today_with_no_events(self, handler, event_db):
        reply = handler.handle("12345", "today", now=NOW)

        assert reply.kind == "query"
        assert reply.text == "No events found for today."
        user = event_db.find_user("12345")
        assert event_db.query_events(user.id, "2000-01-01", "2100-01-01") == []

    def test_today_lists_events_of_human_day(self, handler, event_db):
        user = event_db.create_user("12345")
        event_db.insert_event(Event(user_id=user.id, category="call", title="Call Mom", date="2025-01-10", time="18:00:00"))
        event_db.insert_event(Event(user_id=user.id, category="task", title="Pay rent", date="2025-01-10"))
        event_db.insert_event(Event(user_id=user.id, category="task", title="Tomorrow's thing", date="2025-01-11"))

        reply = handler.handle("12345", "today", now=NOW)

        assert reply.text.startswith("📅 Your schedule for today:")
        assert "• All day Pay rent" in reply.text
        assert "• 6:00 PM Call Mom" in reply.text
        assert "Tomorrow's thing" not in reply.text
        assert reply.text.index("Pay rent") < reply.text.index("Call Mom")

    def test_upcoming_range(self, handler, event_db):
        user = event_db.create_user("12345")
        event_db.insert_event(Event(user_id=user.id, category="flight", title="Flight", date="2025-01-17"))
        event_db.insert_event(Event(user_id=user.id, category="hotel", title="Hotel", date="2025-01-18"))

        reply = handler.handle("12345", "show my schedule", now=NOW)

        assert "Fri, Jan 10 – Fri, Jan 17" in reply.text
        assert "Flight" in reply.text
        assert "Hotel" not in reply.text


class TestFlow:
    def test_unrecognized_returns_hint(self, handler):
        reply = handler.handle("12345", "hello there", now=NOW)
        assert reply.kind == "hint"
        assert reply.text == USAGE_HINT

    def test_user_created_on_first_message(self, handler, event_db):
        handler.handle("12345", "hello", "Asha", now=NOW)
        user = event_db.find_user("12345")
        assert user is not None
        assert user.display_name == "Asha"

    def test_every_message_logged(self, handler, event_db):
        handler.handle("12345", "hello", now=NOW)
        handler.handle("12345", "today", now=NOW)
        assert [m["body"] for m in event_db.list_messages("12345")] == ["hello", "today"]

    def test_logged_messages_carry_user_id(self, handler, event_db):
        handler.handle("12345", "hello", now=NOW)
        handler.handle("12345", "today", now=NOW)

        user = event_db.find_user("12345")
        assert [m["user_id"] for m in event_db.list_messages("12345")] == [user.id, user.id]

    def test_store_error_returns_apology(self):
        events = MagicMock()
        events.find_user.side_effect = RuntimeError("db down")
        handler = MessageHandler(events, rollover_hour=5, tz_name=TZ, horizon_days=7)

        reply = handler.handle("12345", "today", now=NOW)

        assert reply.kind == "error"
        assert reply.text == APOLOGY
        assert "db down" not in reply.text

    def test_rate_limited(self, event_db, tmp_db_path):
        limiter = RateLimitDB(db_path=tmp_db_path, max_requests=2, window_seconds=3600)
        handler = MessageHandler(event_db, rate_limiter=limiter, rollover_hour=5, tz_name=TZ, horizon_days=7)

        handler.handle("12345", "today", now=NOW)
        handler.handle("12345", "today", now=NOW)
        reply = handler.handle("12345", "meeting tomorrow 4pm", now=NOW)

        assert reply.kind == "rate_limited"
        assert reply.text == RATE_LIMITED
        user = event_db.find_user("12345")
        assert event_db.query_events(user.id, "2000-01-01", "2100-01-01") == []
        # still audited, with the sender attached
        messages = event_db.list_messages("12345")
        assert len(messages) == 3
        assert messages[2]["user_id"] == user.id


class TestPreferences:
    def test_set_email(self, handler, event_db):
        reply = handler.set_email("12345", "asha@example.com", "Asha")
        assert reply.kind == "created"
        user = event_db.find_user("12345")
        assert user.email == "asha@example.com"
        assert user.email_enabled is True

    def test_set_email_rejects_garbage(self, handler, event_db):
        reply = handler.set_email("12345", "not-an-email")
        assert reply.kind == "hint"
        assert event_db.find_user("12345") is None

    def test_digest_off_then_on(self, handler, event_db):
        handler.set_email("12345", "asha@example.com")
        handler.set_digest("12345", False)
        user = event_db.find_user("12345")
        assert user.chat_enabled is False
        assert user.email_enabled is False

        handler.set_digest("12345", True)
        user = event_db.find_user("12345")
        assert user.chat_enabled is True
        assert user.email_enabled is True
