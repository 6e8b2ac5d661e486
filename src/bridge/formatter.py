"""Fit gateway replies into a single WhatsApp text message."""

from __future__ import annotations

WHATSAPP_MAX_LENGTH = 4096
TRUNCATION_NOTICE = "\n\n... (response truncated)"

_RESERVED = 50  # room kept for the notice
_NEWLINE_LOOKBACK = 200


def format_response(text: str, max_length: int = WHATSAPP_MAX_LENGTH) -> str:
    """Truncate ``text`` to at most ``max_length`` characters.

    Over-long text is cut at the last newline if one falls within the final
    ``_NEWLINE_LOOKBACK`` characters of the limit, otherwise at a hard
    character boundary, and TRUNCATION_NOTICE is appended. Limits of
    ``_RESERVED`` or less keep only the notice's own length in reserve, and
    limits too small for the notice get a bare hard cut.
    """
    if len(text) <= max_length:
        return text

    reserved = _RESERVED if max_length > _RESERVED else len(TRUNCATION_NOTICE)
    if max_length <= reserved:
        return text[:max(max_length, 0)]

    truncated = text[: max_length - reserved]
    last_newline = truncated.rfind("\n")
    near_limit = last_newline >= 0 and last_newline > max_length - _NEWLINE_LOOKBACK
    cut = last_newline if near_limit else len(truncated)
    return truncated[:cut] + TRUNCATION_NOTICE
