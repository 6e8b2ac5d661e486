"""Click CLI for exercising the bridge without a live webhook."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import click

from src.audit.logger import validate_audit_chain
from src.bridge.formatter import WHATSAPP_MAX_LENGTH, format_response
from src.bridge.session import DEFAULT_TIMEOUT_SECONDS, BridgeError, send_to_gateway
from src.config import DEFAULT_GATEWAY_URL
from src.webhook.normalizer import extract_messages
from src.webhook.signature import sign_body, verify_signature


@click.group()
def cli() -> None:
    """WhatsApp gateway bridge tools."""


@cli.command()
@click.argument("body_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--secret", required=True, help="WhatsApp app secret.")
@click.option(
    "--algorithm", default="sha256", type=click.Choice(["sha256", "sha1"]),
    help="HMAC hash function.",
)
def sign(body_file: str, secret: str, algorithm: str) -> None:
    """Print the X-Hub-Signature value for a raw webhook body."""
    click.echo(sign_body(Path(body_file).read_bytes(), secret, algorithm))


@cli.command()
@click.argument("body_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--secret", required=True, help="WhatsApp app secret.")
@click.option("--signature", required=True, help="Signature header value.")
def verify(body_file: str, secret: str, signature: str) -> None:
    """Check a signature header against a raw webhook body."""
    if verify_signature(Path(body_file).read_bytes(), signature, secret):
        click.echo("valid")
        return
    click.echo("invalid", err=True)
    sys.exit(1)


@cli.command()
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False))
def normalize(payload_file: str) -> None:
    """Print the canonical messages extracted from a webhook payload."""
    payload = json.loads(Path(payload_file).read_text())
    messages = extract_messages(payload)
    click.echo(json.dumps([m.model_dump(mode="json") for m in messages], indent=2))


@cli.command("verify-audit")
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--live-only", is_flag=True, help="Skip rotated backups.")
def verify_audit(log_file: str, live_only: bool) -> None:
    """Check the hash chain of an audit log and its rotated backups."""
    result = validate_audit_chain(Path(log_file), include_rotated=not live_only)
    if result.valid:
        click.echo(f"chain intact ({result.entries} entries)")
        return
    click.echo(f"chain broken at {result.file}:{result.broken_at_line}", err=True)
    sys.exit(1)


@cli.command()
@click.argument("text")
@click.option("--url", default=DEFAULT_GATEWAY_URL, envvar="GATEWAY_WS_URL",
              help="Gateway WebSocket URL.")
@click.option("--token", default=None, envvar="GATEWAY_TOKEN", help="Gateway token.")
@click.option("--conversation", default=None, help="Conversation identifier.")
@click.option("--timeout", default=DEFAULT_TIMEOUT_SECONDS, type=float,
              help="Response deadline in seconds.")
@click.option("--max-length", default=WHATSAPP_MAX_LENGTH, type=int,
              help="Truncate the reply like a WhatsApp message.")
def ask(
    text: str,
    url: str,
    token: str | None,
    conversation: str | None,
    timeout: float,
    max_length: int,
) -> None:
    """Send TEXT to the gateway and print the reply."""
    try:
        reply = asyncio.run(send_to_gateway(
            url, text, token=token, conversation_id=conversation, timeout=timeout,
        ))
    except BridgeError as exc:
        click.echo(f"{type(exc).__name__}: {exc}", err=True)
        sys.exit(1)
    click.echo(format_response(reply, max_length))


if __name__ == "__main__":
    cli()
