"""Resend email channel — implements EmailChannelPort.

Sends through the Resend HTTP API. Attachments are base64-encoded in the
JSON payload as the API expects.
"""

from __future__ import annotations

import base64
import logging

import httpx

from smartcal.ports.delivery_port import Attachment, DeliveryError

logger = logging.getLogger(__name__)

_RESEND_EMAILS_URL = "https://api.resend.com/emails"
_TIMEOUT_SECONDS = 15


class ResendEmailChannel:
    """Resend implementation of EmailChannelPort."""

    def __init__(self, api_key: str, sender: str) -> None:
        self._api_key = api_key
        self._sender = sender

    async def send_email(
        self,
        address: str,
        subject: str,
        html: str,
        attachment: Attachment | None = None,
    ) -> str:
        payload: dict = {
            "from": self._sender,
            "to": [address],
            "subject": subject,
            "html": html,
        }
        if attachment is not None:
            payload["attachments"] = [{
                "filename": attachment.filename,
                "content": base64.b64encode(attachment.content).decode("ascii"),
            }]

        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.post(
                    _RESEND_EMAILS_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Resend email to {address} failed: {exc}") from exc

        message_id = data.get("id")
        if not message_id:
            raise DeliveryError(f"Resend returned no message id for {address}: {data}")

        logger.info("Email %s sent to %s", message_id, address)
        return message_id
