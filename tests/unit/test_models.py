"""Tests for shared Pydantic data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.models import AuditEvent, AuditEventType, MessageKind, RiskLevel
from tests.conftest import make_canonical_message


class TestMessageKind:
    def test_known_kind(self):
        assert MessageKind.from_wire("image") is MessageKind.IMAGE

    def test_unknown_kind_is_unsupported(self):
        assert MessageKind.from_wire("sticker") is MessageKind.UNSUPPORTED


class TestCanonicalMessage:
    def test_conversation_id_derived_from_sender(self):
        assert make_canonical_message(sender_id="999").conversation_id == "whatsapp-999"

    def test_empty_text_rejected(self):
        with pytest.raises(ValidationError):
            make_canonical_message(text="")

    def test_empty_sender_rejected(self):
        with pytest.raises(ValidationError):
            make_canonical_message(sender_id="")

    def test_frozen(self):
        msg = make_canonical_message()
        with pytest.raises(ValidationError):
            msg.text = "changed"

    def test_json_round_trip(self):
        msg = make_canonical_message(reply_to_message_id="wamid.prev")
        restored = type(msg).model_validate_json(msg.model_dump_json())
        assert restored == msg


class TestAuditEvent:
    def test_timestamp_defaults_to_now(self):
        event = AuditEvent(
            event_type=AuditEventType.BRIDGE_FAILURE,
            action="bridge",
            result="failure",
            risk_level=RiskLevel.MEDIUM,
        )
        assert event.timestamp.endswith("+00:00")
        assert event.details is None
