"""Per-webhook control flow between WhatsApp and the gateway.

Messages from one webhook delivery are handled strictly in order: each
message's gateway round trip and reply finish before the next one starts,
so a sender's replies arrive in the order the messages were sent.
Outbound WhatsApp calls are best effort and never abort the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

import httpx

from src.bridge.formatter import WHATSAPP_MAX_LENGTH, format_response
from src.bridge.session import BridgeError, send_to_gateway
from src.models import AuditEventType, CanonicalMessage, RiskLevel
from src.whatsapp.client import WhatsAppAPIError

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.config import GatewayConfig
    from src.whatsapp.client import WhatsAppClient

logger = logging.getLogger(__name__)

THINKING_REACTION = "\N{THINKING FACE}"
UNAVAILABLE_NOTICE = (
    "\N{WARNING SIGN}\N{VARIATION SELECTOR-16} Sorry, the assistant is currently "
    "unavailable. Please try again later."
)
ERROR_NOTICE = (
    "\N{CROSS MARK} Sorry, I encountered an error processing your message. "
    "Please try again."
)

_HEALTH_TIMEOUT_SECONDS = 5.0

HealthCheck = Callable[[], Awaitable[None]]


class BackendUnavailableError(Exception):
    """The gateway cannot be reached at all."""


class GatewayHealthCheck:
    """HTTP health check run once per webhook before any message is bridged."""

    def __init__(self, health_url: str, timeout: float = _HEALTH_TIMEOUT_SECONDS) -> None:
        self._health_url = health_url
        self._timeout = timeout

    async def __call__(self) -> None:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(self._health_url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise BackendUnavailableError(f"Gateway unreachable: {exc}") from exc
        if resp.status_code >= 400:
            raise BackendUnavailableError(
                f"Gateway health check returned {resp.status_code}",
            )


class SessionOrchestrator:
    """Drives read receipt, thinking indicator, bridge and reply per message."""

    def __init__(
        self,
        client: WhatsAppClient,
        gateway: GatewayConfig,
        health_check: HealthCheck | None = None,
        audit_logger: AuditLogger | None = None,
        max_length: int = WHATSAPP_MAX_LENGTH,
    ) -> None:
        self._client = client
        self._gateway = gateway
        self._health_check = health_check
        self._audit = audit_logger
        self._max_length = max_length

    async def process_messages(self, messages: Sequence[CanonicalMessage]) -> None:
        if not messages:
            return

        if self._health_check is not None:
            try:
                await self._health_check()
            except BackendUnavailableError as exc:
                logger.error("Gateway unavailable: %s", exc)
                if self._audit:
                    self._audit.record(
                        AuditEventType.BACKEND_UNAVAILABLE,
                        action="health_check",
                        result="failure",
                        risk_level=RiskLevel.MEDIUM,
                        error=str(exc),
                        pending=len(messages),
                    )
                for message in messages:
                    await self._best_effort(
                        "send unavailability notice",
                        self._client.send_text(message.sender_id, UNAVAILABLE_NOTICE),
                    )
                return

        for message in messages:
            await self.process_message(message)

    async def process_message(self, message: CanonicalMessage) -> bool:
        """Bridge one message and reply. Returns True if a reply was produced."""
        logger.info(
            "Processing message from %s: %s", message.sender_name, message.text[:100],
        )

        await self._best_effort(
            "mark as read", self._client.mark_as_read(message.message_id),
        )
        await self._best_effort(
            "send thinking reaction",
            self._client.send_reaction(
                message.sender_id, message.message_id, THINKING_REACTION,
            ),
        )

        try:
            response = await send_to_gateway(
                self._gateway.url,
                message.text,
                token=self._gateway.token,
                conversation_id=message.conversation_id,
                timeout=self._gateway.timeout_seconds,
            )
        except BridgeError as exc:
            logger.error("Error processing message from %s: %s", message.sender_id, exc)
            self._audit_bridge(message, "failure", error_type=type(exc).__name__)
            await self._clear_reaction(message)
            await self._best_effort(
                "send error notice",
                self._client.send_text(message.sender_id, ERROR_NOTICE),
            )
            return False

        await self._clear_reaction(message)
        self._audit_bridge(message, "success", response_length=len(response))
        if not response:
            logger.warning("Gateway returned an empty reply for %s", message.message_id)
            return True

        formatted = format_response(response, self._max_length)
        await self._best_effort(
            "send reply", self._client.send_text(message.sender_id, formatted),
        )
        logger.info(
            "Sent response to %s, length: %d", message.sender_id, len(formatted),
        )
        return True

    async def _clear_reaction(self, message: CanonicalMessage) -> None:
        await self._best_effort(
            "clear thinking reaction",
            self._client.send_reaction(message.sender_id, message.message_id, ""),
        )

    async def _best_effort(self, action: str, call: Awaitable[object]) -> None:
        try:
            await call
        except (httpx.HTTPError, WhatsAppAPIError) as exc:
            logger.warning("Failed to %s: %s", action, exc)

    def _audit_bridge(
        self, message: CanonicalMessage, result: str, **details: object,
    ) -> None:
        if not self._audit:
            return
        success = result == "success"
        self._audit.record(
            AuditEventType.BRIDGE_SUCCESS if success else AuditEventType.BRIDGE_FAILURE,
            action="bridge",
            result=result,
            risk_level=RiskLevel.INFO if success else RiskLevel.LOW,
            sender_id=message.sender_id,
            message_id=message.message_id,
            **details,
        )
