"""Streaming bridge session: one gateway round trip per inbound message.

Each session opens its own WebSocket to the gateway, sends a single
``{"type": "user"}`` frame and aggregates the streamed reply:

    CONNECTING -> OPEN -> RECEIVING -> COMPLETE | FAILED

A deadline is armed before connecting. Whatever happens first (terminal
frame, deadline, connection error or the gateway closing the socket)
settles a one-shot future; everything after that is ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.bridge.frames import (
    AssistantFrame,
    ChunkFrame,
    CompleteFrame,
    ErrorFrame,
    GatewayFrame,
    UnrecognizedFrame,
    parse_frame,
    user_frame,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
_NORMAL_CLOSURE = 1000


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    RECEIVING = "receiving"
    COMPLETE = "complete"
    FAILED = "failed"


class BridgeError(Exception):
    """Base class for bridge session failures."""


class BridgeTimeoutError(BridgeError):
    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Gateway response timeout after {timeout:g}s")


class BridgeConnectionError(BridgeError):
    """The WebSocket to the gateway could not be established."""


class BackendReportedError(BridgeError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class GatewayProtocolError(BridgeError):
    """The exchange failed for a reason the gateway protocol does not name."""


class ProtocolClosedError(BridgeError):
    def __init__(self, code: int | None = None, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"WebSocket closed unexpectedly: {code} {reason}".rstrip())


def build_gateway_url(
    url: str, token: str | None = None, conversation_id: str | None = None,
) -> str:
    """Append ``token`` / ``conversation`` query parameters to ``url``."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if token:
        query.append(("token", token))
    if conversation_id:
        query.append(("conversation", conversation_id))
    return urlunsplit(parts._replace(query=urlencode(query)))


class BridgeSession:
    """A single request/response exchange with the gateway.

    ``run()`` returns the reply text or raises a BridgeError subclass.
    A session is single-use.
    """

    def __init__(
        self,
        url: str,
        text: str,
        *,
        token: str | None = None,
        conversation_id: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._url = build_gateway_url(url, token, conversation_id)
        self._text = text
        self._timeout = timeout
        self._fragments: list[str] = []
        self._result: asyncio.Future[str] | None = None
        self._close_reason = "Complete"
        self.state = SessionState.CONNECTING

    @property
    def fragments(self) -> tuple[str, ...]:
        return tuple(self._fragments)

    async def run(self) -> str:
        if self._result is not None:
            raise RuntimeError("BridgeSession.run() may only be called once")

        loop = asyncio.get_running_loop()
        self._result = loop.create_future()
        deadline = loop.call_later(self._timeout, self._on_deadline)
        driver = asyncio.create_task(self._drive())
        try:
            return await self._result
        finally:
            deadline.cancel()
            # the driver closes the socket itself unless it is stuck reading
            if not self._result.done() or self._close_reason == "Timeout":
                driver.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await driver

    # --- resolution ---

    def _settle(
        self, text: str | None = None, error: BaseException | None = None,
    ) -> bool:
        """Resolve the session once. Returns False if already resolved."""
        assert self._result is not None
        if self._result.done():
            logger.debug("Session already settled; ignoring %s", error or "result")
            return False
        if error is not None:
            self.state = SessionState.FAILED
            self._close_reason = "Error"
            self._result.set_exception(error)
        else:
            self.state = SessionState.COMPLETE
            self._close_reason = "Complete"
            self._result.set_result(text or "")
        return True

    def _on_deadline(self) -> None:
        if self._settle(error=BridgeTimeoutError(self._timeout)):
            self._close_reason = "Timeout"
            logger.error("Gateway response timeout after %ss", self._timeout)

    def _on_closed(self, code: int | None, reason: str) -> None:
        partial = "".join(self._fragments)
        if partial:
            logger.info(
                "Connection closed with partial response, length: %d", len(partial),
            )
            self._settle(text=partial)
        else:
            self._settle(error=ProtocolClosedError(code, reason))

    # --- frame handling ---

    def _handle(self, frame: GatewayFrame) -> None:
        if isinstance(frame, ChunkFrame):
            self._fragments.append(frame.content)
        elif isinstance(frame, CompleteFrame):
            response = "".join(self._fragments)
            logger.info("Response complete, length: %d", len(response))
            self._settle(text=response)
        elif isinstance(frame, AssistantFrame):
            logger.info("Got full response, length: %d", len(frame.content))
            self._settle(text=frame.content)
        elif isinstance(frame, ErrorFrame):
            logger.error("Gateway error: %s", frame.message)
            self._settle(error=BackendReportedError(frame.message))
        elif isinstance(frame, UnrecognizedFrame):
            if frame.content:
                self._fragments.append(frame.content)
            logger.debug("Unknown message type: %s", frame.type)

    async def _drive(self) -> None:
        try:
            ws = await connect(self._url)
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.error("Failed to connect to gateway: %s", exc)
            self._settle(error=BridgeConnectionError(
                f"Failed to establish WebSocket connection to gateway: {exc}",
            ))
            return
        except Exception as exc:
            logger.exception("Unexpected error connecting to gateway")
            self._settle(error=BridgeConnectionError(
                f"Failed to establish WebSocket connection to gateway: {exc}",
            ))
            return

        try:
            await self._exchange(ws)
        except ConnectionClosed as exc:
            code = exc.rcvd.code if exc.rcvd else None
            reason = exc.rcvd.reason if exc.rcvd else ""
            self._on_closed(code, reason)
        except Exception as exc:
            logger.exception("Error processing gateway frames")
            self._settle(error=GatewayProtocolError(
                f"Gateway exchange failed: {type(exc).__name__}: {exc}",
            ))
        finally:
            await ws.close(code=_NORMAL_CLOSURE, reason=self._close_reason)

    async def _exchange(self, ws: ClientConnection) -> None:
        self.state = SessionState.OPEN
        logger.debug("Sending user message, length: %d", len(self._text))
        await ws.send(user_frame(self._text))
        self.state = SessionState.RECEIVING

        assert self._result is not None
        async for raw in ws:
            self._handle(parse_frame(raw))
            if self._result.done():
                return
        self._on_closed(ws.close_code, ws.close_reason or "")


async def send_to_gateway(
    url: str,
    text: str,
    *,
    token: str | None = None,
    conversation_id: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> str:
    """Run one BridgeSession and return the gateway's reply."""
    session = BridgeSession(
        url, text, token=token, conversation_id=conversation_id, timeout=timeout,
    )
    return await session.run()
