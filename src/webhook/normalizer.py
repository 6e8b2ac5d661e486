"""WhatsApp webhook payload normalization.

Turns the nested ``entry[].changes[].value.messages[]`` structure of a
WhatsApp Cloud API webhook into an ordered list of CanonicalMessage.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from src.models import MEDIA_KINDS, CanonicalMessage, MessageKind

logger = logging.getLogger(__name__)

WHATSAPP_OBJECT = "whatsapp_business_account"
MESSAGES_FIELD = "messages"


def _location_text(location: dict[str, Any] | None) -> str:
    if not location:
        return "[Location]"
    name = location.get("name") or ""
    address = location.get("address") or ""
    latitude = location.get("latitude", "")
    longitude = location.get("longitude", "")
    return f"[Location: {name} {address} ({latitude}, {longitude})]"


def extract_text(message: dict[str, Any]) -> str | None:
    """Derive display text for a raw WhatsApp message.

    Returns None for kinds the bridge does not handle (stickers, reactions,
    system messages, ...). Contact cards map to a fixed placeholder so no
    third-party contact data is echoed to the gateway.
    """
    kind = MessageKind.from_wire(message.get("type"))

    if kind is MessageKind.TEXT:
        return (message.get("text") or {}).get("body") or ""
    if kind in MEDIA_KINDS:
        media = message.get(kind.value) or {}
        return media.get("caption") or f"[{kind.value}]"
    if kind is MessageKind.LOCATION:
        return _location_text(message.get("location"))
    if kind is MessageKind.CONTACTS:
        return "[Contact shared]"
    if kind is MessageKind.INTERACTIVE:
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return reply.get("title") or "[Interactive]"
    if kind is MessageKind.BUTTON:
        return (message.get("button") or {}).get("text") or "[Button]"
    return None


def parse_message(
    message: dict[str, Any], contacts: dict[str, str],
) -> CanonicalMessage | None:
    """Build a CanonicalMessage, or None if the message should be dropped."""
    text = extract_text(message)
    if text is None:
        logger.info("Unsupported message type: %s", message.get("type"))
        return None
    if not text:
        logger.debug("Dropping message %s with empty text", message.get("id"))
        return None

    sender = message["from"]
    return CanonicalMessage(
        message_id=message["id"],
        sender_id=sender,
        sender_name=contacts.get(sender) or sender,
        received_at=datetime.fromtimestamp(int(message["timestamp"]), tz=UTC),
        kind=MessageKind.from_wire(message.get("type")),
        text=text,
        reply_to_message_id=(message.get("context") or {}).get("id"),
    )


def _dicts(items: Any) -> list[dict[str, Any]]:
    """Keep the dict members of a JSON array; anything else yields nothing."""
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _contact_names(value: dict[str, Any]) -> dict[str, str]:
    names: dict[str, str] = {}
    for contact in _dicts(value.get("contacts")):
        profile = contact.get("profile")
        wa_id = contact.get("wa_id")
        name = profile.get("name") if isinstance(profile, dict) else None
        if isinstance(wa_id, str) and isinstance(name, str) and wa_id and name:
            names[wa_id] = name
    return names


def extract_messages(payload: dict[str, Any]) -> list[CanonicalMessage]:
    """Extract supported messages in encounter order.

    Only ``messages`` changes are read; status updates and other fields are
    skipped. A malformed message is logged and skipped without affecting
    the rest of the batch.
    """
    if payload.get("object") != WHATSAPP_OBJECT:
        logger.info("Ignoring non-WhatsApp webhook object: %s", payload.get("object"))
        return []

    messages: list[CanonicalMessage] = []
    for entry in _dicts(payload.get("entry")):
        for change in _dicts(entry.get("changes")):
            if change.get("field") != MESSAGES_FIELD:
                continue
            value = change.get("value")
            if not isinstance(value, dict) or not value.get("messages"):
                continue
            raw_messages = value["messages"]
            if not isinstance(raw_messages, list):
                logger.warning("Skipping change with non-list messages")
                continue

            contacts = _contact_names(value)
            for raw in raw_messages:
                try:
                    parsed = parse_message(raw, contacts)
                except (
                    KeyError, TypeError, ValueError, AttributeError,
                    OverflowError, OSError,
                ) as exc:
                    # ValidationError is a ValueError; out-of-range timestamps
                    # raise OverflowError or OSError
                    logger.warning("Skipping malformed message: %s", exc)
                    continue
                if parsed is not None:
                    messages.append(parsed)
    return messages

