"""WhatsApp Cloud API client: text replies, reactions and read receipts.

Each call is a single POST to ``/<phone_number_id>/messages`` on the Graph
API. There is no retry; callers treat every send as best effort.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

GRAPH_API_VERSION = "v21.0"
GRAPH_API_BASE = "https://graph.facebook.com"
_REQUEST_TIMEOUT_SECONDS = 30.0


def _json_object(resp: httpx.Response) -> dict[str, Any]:
    """Response body as a dict; empty when it is not a JSON object."""
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class WhatsAppAPIError(Exception):
    """Raised when the Graph API rejects a send request."""

    def __init__(
        self, message: str, code: int | None = None, status_code: int | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(f"WhatsApp API error: {message} (code: {code})")

    @classmethod
    def from_response(cls, resp: httpx.Response) -> WhatsAppAPIError:
        error = _json_object(resp).get("error")
        if not isinstance(error, dict):
            error = {}
        return cls(
            message=error.get("message") or resp.text or resp.reason_phrase,
            code=error.get("code"),
            status_code=resp.status_code,
        )


class WhatsAppClient:
    """Sends outbound messages on behalf of one business phone number."""

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        api_base: str = GRAPH_API_BASE,
    ) -> None:
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._messages_url = (
            f"{api_base.rstrip('/')}/{GRAPH_API_VERSION}/{phone_number_id}/messages"
        )

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token}"}
        async with httpx.AsyncClient(verify=True) as client:
            return await client.post(
                self._messages_url,
                json=payload,
                headers=headers,
                timeout=_REQUEST_TIMEOUT_SECONDS,
            )

    async def _send_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        logger.info("Sending %s message to %s", payload["type"], payload["to"])
        resp = await self._post(payload)
        if resp.status_code >= 400:
            error = WhatsAppAPIError.from_response(resp)
            logger.error("WhatsApp API error: %s", error)
            raise error

        result = _json_object(resp)
        sent = result.get("messages")
        if isinstance(sent, list) and sent and isinstance(sent[0], dict):
            logger.debug("Message sent, ID: %s", sent[0].get("id"))
        else:
            logger.warning("Unexpected send response body: %.200s", resp.text)
        return result

    async def send_text(self, to: str, body: str) -> dict[str, Any]:
        """Send a text message to a WhatsApp user."""
        return await self._send_message({
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": True, "body": body},
        })

    async def send_reaction(
        self, to: str, message_id: str, emoji: str,
    ) -> dict[str, Any]:
        """React to ``message_id``; an empty emoji removes the reaction."""
        return await self._send_message({
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "reaction",
            "reaction": {"message_id": message_id, "emoji": emoji},
        })

    async def mark_as_read(self, message_id: str) -> bool:
        resp = await self._post({
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
        })
        if resp.status_code >= 400:
            logger.error(
                "Failed to mark as read: %s", WhatsAppAPIError.from_response(resp),
            )
            return False
        return True
