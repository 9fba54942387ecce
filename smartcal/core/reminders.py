"""
Smart Calendar — Event Reminders.

Every tick, due reminders (reminder_at reached, not yet sent) are pushed to
their owners over the chat channel, oldest first and at most one batch per
tick. An event is flagged sent only after its message went out, so a failed
send is retried on the next tick. One event's failure does not stop the
others.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from smartcal.core.clock import format_day, local_now
from smartcal.core.parser import format_12h

if TYPE_CHECKING:
    from smartcal.data.models import Event, User
    from smartcal.ports.delivery_port import ChatChannelPort
    from smartcal.ports.event_store_port import EventStorePort

logger = logging.getLogger(__name__)


@dataclass
class ReminderRunResult:
    """status: "no_reminders" | "completed" | "load_error" """

    status: str
    due: int = 0
    sent: int = 0
    failed: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def build_reminder_text(event: Event) -> str:
    when = format_day(event.date)
    if event.time:
        when += f" at {format_12h(event.time)}"
    return f"⏰ Reminder\n\n{event.title}\n{when}"


class ReminderWorker:
    """Sends the chat reminders that have come due."""

    def __init__(
        self,
        events: EventStorePort,
        chat: ChatChannelPort,
        tz_name: str | None = None,
        batch_size: int | None = None,
    ) -> None:
        from smartcal.config import settings

        self._events = events
        self._chat = chat
        self._tz_name = tz_name or settings.TIMEZONE
        self._batch_size = settings.REMINDER_BATCH_SIZE if batch_size is None else batch_size

    async def run(self, now: datetime | None = None) -> ReminderRunResult:
        """Send one batch of due reminders. Never raises."""
        current = local_now(self._tz_name, now).replace(tzinfo=None)
        try:
            due = self._events.list_due_reminders(
                current.isoformat(timespec="seconds"), self._batch_size,
            )
        except Exception as exc:
            logger.error("Loading due reminders failed: %s", exc)
            return ReminderRunResult(status="load_error", error=str(exc))

        if not due:
            return ReminderRunResult(status="no_reminders")

        users: dict[int, User | None] = {}
        sent = failed = 0
        for event in due:
            if await self._send(event, users):
                sent += 1
            else:
                failed += 1

        logger.info("Reminders: %d due, %d sent, %d failed", len(due), sent, failed)
        return ReminderRunResult(status="completed", due=len(due), sent=sent, failed=failed)

    async def _send(self, event: Event, users: dict[int, User | None]) -> bool:
        try:
            if event.user_id not in users:
                users[event.user_id] = self._events.get_user(event.user_id)
            user = users[event.user_id]
            if user is None or not user.address:
                logger.warning("Reminder for event #%d has no reachable owner", event.id)
                return False

            message_id = await self._chat.send_chat_message(user.address, build_reminder_text(event))
            self._events.mark_reminder_sent(event.id)
        except Exception as exc:
            logger.warning("Reminder for event #%d failed: %s", event.id, exc)
            return False

        logger.info("Reminder for event #%d sent to user #%d", event.id, event.user_id)
        try:
            self._events.log_activity(event.user_id, "reminder_sent", {
                "event_id": event.id, "message_id": message_id,
            })
        except Exception as exc:
            logger.warning("Failed to log reminder activity for event #%d: %s", event.id, exc)
        return True
