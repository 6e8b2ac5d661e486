"""Runtime configuration read from environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from src.bridge.session import DEFAULT_TIMEOUT_SECONDS

DEFAULT_GATEWAY_URL = "ws://localhost:18789/ws"


class WhatsAppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(min_length=1)
    phone_number_id: str = Field(min_length=1)
    verify_token: str = ""
    # None disables signature checks (development only)
    app_secret: str | None = None


class GatewayConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = DEFAULT_GATEWAY_URL
    token: str | None = None
    health_url: str | None = None
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)


def _optional(env: Mapping[str, str], name: str) -> str | None:
    return env.get(name) or None


def whatsapp_config_from_env(
    env: Mapping[str, str] | None = None,
) -> WhatsAppConfig | None:
    """Return WhatsApp settings, or None when the client is not configured."""
    env = os.environ if env is None else env
    access_token = env.get("WHATSAPP_ACCESS_TOKEN", "")
    phone_number_id = env.get("WHATSAPP_PHONE_NUMBER_ID", "")
    if not access_token or not phone_number_id:
        return None
    return WhatsAppConfig(
        access_token=access_token,
        phone_number_id=phone_number_id,
        verify_token=env.get("WHATSAPP_VERIFY_TOKEN", ""),
        app_secret=_optional(env, "WHATSAPP_APP_SECRET"),
    )


def gateway_config_from_env(env: Mapping[str, str] | None = None) -> GatewayConfig:
    env = os.environ if env is None else env
    return GatewayConfig(
        url=env.get("GATEWAY_WS_URL") or DEFAULT_GATEWAY_URL,
        token=_optional(env, "GATEWAY_TOKEN"),
        health_url=_optional(env, "GATEWAY_HEALTH_URL"),
        timeout_seconds=float(
            env.get("GATEWAY_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS,
        ),
    )
