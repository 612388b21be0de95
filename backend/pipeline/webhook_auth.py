"""
Webhook signature verification.

The gateway signs the raw request body with HMAC-SHA256 using the shared
webhook secret and sends the hex digest in a header. Verification runs on
the exact bytes received, before any parsing.
"""

import hashlib
import hmac
import os
from typing import Optional

import structlog

from pipeline.errors import AuthenticationError, MissingSignatureError

logger = structlog.get_logger().bind(component="webhook_auth")


class WebhookConfig:
    WEBHOOK_SECRET: str = os.getenv("WEBHOOK_SECRET", "")
    # Local development only
    SIGNATURE_BYPASS: bool = os.getenv("WEBHOOK_SIGNATURE_BYPASS", "false").lower() == "true"


def sign_payload(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: str,
    bypass: bool = False,
) -> None:
    """
    Raise unless signature_header is the HMAC-SHA256 hex digest of raw_body.

    Raises:
        MissingSignatureError: header absent or empty
        AuthenticationError: digest mismatch, or no secret configured
    """
    if bypass:
        logger.warning(
            "webhook_signature_bypassed",
            security_event=True,
            body_bytes=len(raw_body),
        )
        return

    if not signature_header:
        raise MissingSignatureError("missing webhook signature header")

    if not secret:
        logger.error("webhook_secret_not_configured", security_event=True)
        raise AuthenticationError("webhook secret not configured")

    expected = sign_payload(raw_body, secret).encode()
    # headers arrive latin-1 decoded; compare bytes so non-ASCII is a mismatch
    provided = signature_header.strip().lower().encode("utf-8", "replace")
    if not hmac.compare_digest(expected, provided):
        logger.warning("webhook_signature_invalid", security_event=True)
        raise AuthenticationError("invalid webhook signature")
