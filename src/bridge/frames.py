"""Gateway wire frames.

The gateway speaks loosely typed JSON over WebSocket: every frame has a
``type`` discriminator plus optional ``content`` / ``error.message``.
:func:`parse_frame` maps that into a closed set of frame classes so the
session only has to dispatch on type.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

CHUNK_TYPES = frozenset({"chunk", "content", "text"})
COMPLETE_TYPES = frozenset({"done", "complete", "end"})
ASSISTANT_TYPE = "assistant"
ERROR_TYPE = "error"

DEFAULT_ERROR_MESSAGE = "Unknown gateway error"


@dataclass(frozen=True)
class ChunkFrame:
    content: str


@dataclass(frozen=True)
class CompleteFrame:
    pass


@dataclass(frozen=True)
class AssistantFrame:
    """A full, non-streamed answer. Replaces anything streamed before it."""

    content: str


@dataclass(frozen=True)
class ErrorFrame:
    message: str


@dataclass(frozen=True)
class UnrecognizedFrame:
    type: str | None
    content: str | None
    raw: str


GatewayFrame = ChunkFrame | CompleteFrame | AssistantFrame | ErrorFrame | UnrecognizedFrame

TERMINAL_FRAMES = (CompleteFrame, AssistantFrame, ErrorFrame)


def user_frame(content: str) -> str:
    """Serialize the single outbound frame of a session."""
    return json.dumps({"type": "user", "content": content})


def _text_field(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) and value else None


def _error_message(data: dict[str, Any]) -> str:
    error = data.get("error")
    if isinstance(error, dict):
        message = _text_field(error, "message")
        if message:
            return message
    return DEFAULT_ERROR_MESSAGE


def parse_frame(raw: str | bytes) -> GatewayFrame:
    """Classify one inbound WebSocket message.

    Data that does not decode as JSON (including nesting too deep for the
    decoder) is treated as a raw text chunk. The type tag is matched
    case-insensitively. Streaming frames without content and ``assistant``
    frames with empty content come back as UnrecognizedFrame with
    ``content=None``, which callers ignore.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, RecursionError):
        return ChunkFrame(content=raw)
    if not isinstance(data, dict):
        return UnrecognizedFrame(type=None, content=None, raw=raw)

    tag = data.get("type")
    kind = tag.lower() if isinstance(tag, str) else None
    content = _text_field(data, "content")

    if kind in COMPLETE_TYPES:
        return CompleteFrame()
    if kind == ERROR_TYPE:
        return ErrorFrame(message=_error_message(data))
    if kind == ASSISTANT_TYPE:
        if content:
            return AssistantFrame(content=content)
        return UnrecognizedFrame(type=tag, content=None, raw=raw)
    if kind in CHUNK_TYPES:
        if content:
            return ChunkFrame(content=content)
        return UnrecognizedFrame(type=tag, content=None, raw=raw)
    return UnrecognizedFrame(type=tag if isinstance(tag, str) else None, content=content, raw=raw)
