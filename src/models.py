"""Shared Pydantic data models for the WhatsApp gateway bridge."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACTS = "contacts"
    INTERACTIVE = "interactive"
    BUTTON = "button"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_wire(cls, value: object) -> MessageKind:
        try:
            return cls(value)
        except ValueError:
            return cls.UNSUPPORTED


MEDIA_KINDS = frozenset({
    MessageKind.IMAGE,
    MessageKind.VIDEO,
    MessageKind.AUDIO,
    MessageKind.DOCUMENT,
})


class AuditEventType(str, Enum):
    SIGNATURE_FAILURE = "signature_failure"
    UNSIGNED_WEBHOOK = "unsigned_webhook"
    VERIFICATION_SUCCESS = "verification_success"
    VERIFICATION_FAILURE = "verification_failure"
    WEBHOOK_RECEIVED = "webhook_received"
    BRIDGE_SUCCESS = "bridge_success"
    BRIDGE_FAILURE = "bridge_failure"
    BACKEND_UNAVAILABLE = "backend_unavailable"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Message Models ---


class CanonicalMessage(BaseModel):
    """Channel-agnostic representation of one inbound chat message."""

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(min_length=1)
    sender_id: str = Field(min_length=1)
    sender_name: str
    received_at: datetime
    kind: MessageKind
    text: str = Field(min_length=1)
    reply_to_message_id: str | None = None

    @property
    def conversation_id(self) -> str:
        return f"whatsapp-{self.sender_id}"


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    sender_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "rejected"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
