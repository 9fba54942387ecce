"""Event store port — abstract interface for users, events and logs.

Core modules depend on this protocol, never on a specific datastore.
"""

from __future__ import annotations

from typing import Protocol

from smartcal.data.models import Event, User


class EventStorePort(Protocol):
    """Narrow repository interface used by the message handler and the digest and reminder workers."""

    def find_user(self, address: str) -> User | None: ...

    def get_user(self, user_id: int) -> User | None: ...

    def create_user(self, address: str, display_name: str | None = None) -> User: ...

    def set_email(self, user_id: int, email: str) -> None: ...

    def set_channels(
        self,
        user_id: int,
        chat_enabled: bool | None = None,
        email_enabled: bool | None = None,
    ) -> None: ...

    def insert_event(self, event: Event) -> Event: ...

    def query_events(
        self, user_id: int, date_from: str, date_to: str
    ) -> list[Event]: ...

    def list_active_users(self) -> list[User]: ...

    def list_due_reminders(self, now_local: str, limit: int = 20) -> list[Event]: ...

    def mark_reminder_sent(self, event_id: int) -> bool: ...

    def log_message(
        self, address: str, body: str, user_id: int | None = None
    ) -> int: ...

    def set_message_user(self, message_id: int, user_id: int) -> None: ...

    def log_activity(
        self, user_id: int, action: str, metadata: dict | None = None
    ) -> None: ...
