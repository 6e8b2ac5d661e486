"""Shared test fixtures for the WhatsApp gateway bridge."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.models import CanonicalMessage, MessageKind
from src.whatsapp.client import WhatsAppClient


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def mock_whatsapp_client() -> MagicMock:
    client = MagicMock(spec=WhatsAppClient)
    client.send_text = AsyncMock(return_value={"messages": [{"id": "wamid.out"}]})
    client.send_reaction = AsyncMock(return_value={"messages": [{"id": "wamid.r"}]})
    client.mark_as_read = AsyncMock(return_value=True)
    return client


# --- Factory functions for test data ---


def make_canonical_message(**kwargs: Any) -> CanonicalMessage:
    """Factory for CanonicalMessage with sensible defaults."""
    defaults: dict[str, Any] = {
        "message_id": "wamid.in1",
        "sender_id": "15551234567",
        "sender_name": "Alice",
        "received_at": datetime(2026, 1, 1, tzinfo=UTC),
        "kind": MessageKind.TEXT,
        "text": "Hi",
    }
    defaults.update(kwargs)
    return CanonicalMessage(**defaults)


def make_raw_message(
    kind: str = "text",
    message_id: str = "wamid.in1",
    sender: str = "15551234567",
    timestamp: str = "1700000000",
    **content: Any,
) -> dict[str, Any]:
    """Factory for one raw WhatsApp Cloud API message object."""
    message: dict[str, Any] = {
        "from": sender,
        "id": message_id,
        "timestamp": timestamp,
        "type": kind,
    }
    if kind == "text" and not content:
        content = {"text": {"body": "Hi"}}
    message.update(content)
    return message


def make_whatsapp_payload(
    messages: list[dict[str, Any]] | None = None,
    contacts: list[dict[str, Any]] | None = None,
    field: str = "messages",
) -> dict[str, Any]:
    """Factory for a webhook payload with a single entry and change."""
    value: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "metadata": {
            "display_phone_number": "15550000000",
            "phone_number_id": "PHONE_ID",
        },
    }
    if messages is not None:
        value["messages"] = messages
    if contacts is not None:
        value["contacts"] = contacts
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {"id": "WABA_ID", "changes": [{"value": value, "field": field}]},
        ],
    }


def make_contact(wa_id: str = "15551234567", name: str = "Alice") -> dict[str, Any]:
    return {"profile": {"name": name}, "wa_id": wa_id}


# --- Gateway WebSocket double ---


class FakeGatewayConnection:
    """Stands in for a websockets ClientConnection.

    Yields ``frames`` in order, then either ends (clean close), raises
    ``error``, or blocks forever when ``hang`` is set.
    """

    def __init__(
        self,
        frames: list[str | bytes | dict[str, Any]] | None = None,
        *,
        hang: bool = False,
        error: BaseException | None = None,
        close_code: int | None = 1000,
        close_reason: str = "",
    ) -> None:
        self._frames = [
            json.dumps(f) if isinstance(f, dict) else f for f in frames or []
        ]
        self._hang = hang
        self._error = error
        self.close_code = close_code
        self.close_reason = close_reason
        self.sent: list[str] = []
        self.closed_with: tuple[int, str] | None = None
        self.frames_consumed = 0

    async def send(self, data: str) -> None:
        self.sent.append(data)

    def __aiter__(self) -> Any:
        return self._iterate()

    async def _iterate(self) -> Any:
        for frame in self._frames:
            self.frames_consumed += 1
            yield frame
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
