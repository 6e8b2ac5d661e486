"""Webhook payload signature verification.

Meta signs every webhook delivery with the app secret and sends the result
as ``X-Hub-Signature-256: sha256=<hexdigest>`` (older apps also receive
``X-Hub-Signature: sha1=<hexdigest>``). The HMAC must be computed over the
raw request bytes, before any JSON parsing, since a re-serialized body is
not guaranteed to be byte-identical.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"

# Recognized "<prefix>=" values and the hash each one selects.
_ALGORITHMS = {
    "sha256": hashlib.sha256,
    "sha1": hashlib.sha1,
}


def sign_body(raw_body: bytes, secret: str, algorithm: str = "sha256") -> str:
    """Return the signature header value Meta would send for ``raw_body``."""
    try:
        digestmod = _ALGORITHMS[algorithm]
    except KeyError:
        raise ValueError(f"Unsupported signature algorithm: {algorithm}") from None
    digest = hmac.new(secret.encode(), raw_body, digestmod).hexdigest()
    return f"{algorithm}={digest}"


def verify_signature(
    raw_body: bytes, signature_header: str | None, secret: str,
) -> bool:
    """Check ``signature_header`` against an HMAC of ``raw_body``.

    Returns False for an absent header, an unknown algorithm prefix, an
    empty secret or a digest of the wrong length. Prefix and hex digest
    must match exactly, lowercase as Meta sends them. The digest comparison
    is constant-time (hmac.compare_digest), so the position of the first
    mismatching character does not affect how long the check takes.
    """
    if not signature_header or not secret:
        return False

    algorithm, sep, provided = signature_header.partition("=")
    digestmod = _ALGORITHMS.get(algorithm)
    if not sep or digestmod is None:
        logger.warning("Unrecognized signature format")
        return False

    expected = hmac.new(secret.encode(), raw_body, digestmod).hexdigest()
    if len(provided) != len(expected):
        return False

    valid = hmac.compare_digest(provided.encode(), expected.encode())
    if not valid:
        logger.warning("Webhook signature mismatch")
    return valid
