"""Delivery ports — abstract interfaces for sending digests to users.

Core modules depend on these protocols, never on a specific messaging or
mail provider. Adapters raise DeliveryError when a send fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class DeliveryError(Exception):
    """Raised when a delivery channel fails to send."""


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


class ChatChannelPort(Protocol):
    async def send_chat_message(
        self, address: str, text: str, attachment: Attachment | None = None
    ) -> str: ...


class EmailChannelPort(Protocol):
    async def send_email(
        self,
        address: str,
        subject: str,
        html: str,
        attachment: Attachment | None = None,
    ) -> str: ...
