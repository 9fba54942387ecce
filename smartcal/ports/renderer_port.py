"""Renderer port — turns a user's upcoming events into a digest document."""

from __future__ import annotations

from typing import Protocol

from smartcal.data.models import Event


class DigestRendererPort(Protocol):
    filename: str
    mime_type: str

    def render_digest(
        self, events: list[Event], user_name: str, date_from: str, date_to: str
    ) -> bytes: ...
