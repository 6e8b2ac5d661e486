"""FastAPI application exposing the WhatsApp webhook."""

from __future__ import annotations

import hmac
import json
import logging
import os

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from src.audit.logger import AuditLogger
from src.bridge.orchestrator import GatewayHealthCheck, SessionOrchestrator
from src.config import (
    GatewayConfig,
    WhatsAppConfig,
    gateway_config_from_env,
    whatsapp_config_from_env,
)
from src.models import AuditEventType, CanonicalMessage, RiskLevel
from src.webhook.normalizer import extract_messages
from src.webhook.signature import SIGNATURE_HEADER, verify_signature
from src.whatsapp.client import WhatsAppClient

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhook/whatsapp"
_MAX_WEBHOOK_BODY_SIZE = 10 * 1024 * 1024  # 10MB


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    audit_log = os.environ.get("AUDIT_LOG_PATH")
    return create_app(
        whatsapp_config=whatsapp_config_from_env(),
        gateway_config=gateway_config_from_env(),
        audit_logger=AuditLogger.from_env(audit_log) if audit_log else None,
    )


def create_app(
    whatsapp_config: WhatsAppConfig | None = None,
    gateway_config: GatewayConfig | None = None,
    audit_logger: AuditLogger | None = None,
    orchestrator: SessionOrchestrator | None = None,
) -> FastAPI:
    """Create the bridge app.

    The webhook routes are only registered when WhatsApp credentials are
    configured.
    """
    app = FastAPI(docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    if whatsapp_config is None:
        logger.warning("WhatsApp client not configured; webhook routes disabled")
        return app

    gateway_config = gateway_config or GatewayConfig()
    if orchestrator is None:
        orchestrator = SessionOrchestrator(
            client=WhatsAppClient(
                access_token=whatsapp_config.access_token,
                phone_number_id=whatsapp_config.phone_number_id,
            ),
            gateway=gateway_config,
            health_check=(
                GatewayHealthCheck(gateway_config.health_url)
                if gateway_config.health_url else None
            ),
            audit_logger=audit_logger,
        )
    _register_whatsapp_routes(app, whatsapp_config, orchestrator, audit_logger)
    return app


def _register_whatsapp_routes(
    app: FastAPI,
    config: WhatsAppConfig,
    orchestrator: SessionOrchestrator,
    audit_logger: AuditLogger | None,
) -> None:
    if not config.app_secret:
        logger.warning(
            "WHATSAPP_APP_SECRET not set - skipping signature verification "
            "(not recommended for production)",
        )

    def _audit(
        request: Request,
        event_type: AuditEventType,
        result: str,
        risk_level: RiskLevel,
        **details: object,
    ) -> None:
        if audit_logger:
            audit_logger.record(
                event_type,
                action=f"{request.method} {request.url.path}",
                result=result,
                risk_level=risk_level,
                source_ip=request.client.host if request.client else None,
                **details,
            )

    @app.get(WEBHOOK_PATH)
    async def whatsapp_verify(request: Request) -> Response:
        params = request.query_params
        mode = params.get("hub.mode")
        token = params.get("hub.verify_token", "")
        if (
            mode == "subscribe"
            and config.verify_token
            and hmac.compare_digest(token.encode(), config.verify_token.encode())
        ):
            logger.info("Webhook verified successfully")
            _audit(request, AuditEventType.VERIFICATION_SUCCESS, "success", RiskLevel.INFO)
            return PlainTextResponse(params.get("hub.challenge", ""))

        logger.error("Webhook verification failed (mode=%s)", mode)
        _audit(request, AuditEventType.VERIFICATION_FAILURE, "rejected", RiskLevel.MEDIUM)
        return PlainTextResponse("Forbidden", status_code=403)

    @app.post(WEBHOOK_PATH)
    async def whatsapp_webhook(
        request: Request, background_tasks: BackgroundTasks,
    ) -> Response:
        raw_body = await request.body()
        if len(raw_body) > _MAX_WEBHOOK_BODY_SIZE:
            return PlainTextResponse("Request body too large", status_code=413)

        if config.app_secret:
            signature = request.headers.get(SIGNATURE_HEADER)
            if not verify_signature(raw_body, signature, config.app_secret):
                logger.error("Webhook signature verification failed - rejecting request")
                _audit(
                    request, AuditEventType.SIGNATURE_FAILURE, "rejected", RiskLevel.HIGH,
                    signature_present=signature is not None,
                )
                return PlainTextResponse("Invalid signature", status_code=401)
        else:
            logger.warning("Accepting unsigned webhook: no app secret configured")
            _audit(request, AuditEventType.UNSIGNED_WEBHOOK, "success", RiskLevel.MEDIUM)

        try:
            payload = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return PlainTextResponse("Invalid JSON", status_code=400)
        if not isinstance(payload, dict):
            return PlainTextResponse("Invalid payload", status_code=400)

        messages = extract_messages(payload)
        if not messages:
            logger.info("No messages in payload (might be status update)")
            return PlainTextResponse("OK")

        _audit(
            request, AuditEventType.WEBHOOK_RECEIVED, "success", RiskLevel.INFO,
            message_count=len(messages),
        )
        background_tasks.add_task(_process_in_background, orchestrator, messages)
        return PlainTextResponse("OK")


async def _process_in_background(
    orchestrator: SessionOrchestrator, messages: list[CanonicalMessage],
) -> None:
    try:
        await orchestrator.process_messages(messages)
    except Exception:  # response already sent
        logger.exception("Error processing messages")
