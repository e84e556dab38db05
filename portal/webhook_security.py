"""
Webhook Security Module

Signature verification for scheduling-provider callbacks.
Acuity signs the raw request body with HMAC-SHA256 and sends the
base64 digest in the X-Acuity-Signature header.
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Request

from .errors import UnauthorizedError

logger = logging.getLogger(__name__)

ACUITY_SIGNATURE_HEADER = "X-Acuity-Signature"


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def compute_hmac_sha256_base64(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload and return base64 encoded"""
    signature = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(signature).decode("utf-8")


def verify_acuity_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    return constant_time_compare(compute_hmac_sha256_base64(secret, body), signature.strip())


async def verify_acuity_webhook(
    request: Request, secret: Optional[str], raise_on_failure: bool = True
) -> tuple[bool, bytes]:
    """
    Verify an Acuity webhook signature.

    Args:
        request: FastAPI request object
        secret: Webhook secret (the Acuity API key); verification is skipped when unset
        raise_on_failure: If True, raises UnauthorizedError on failure

    Returns:
        Tuple of (is_valid, raw_body)
    """
    raw_body = await request.body()
    signature_header = request.headers.get(ACUITY_SIGNATURE_HEADER, "")

    logger.debug("📥 Acuity webhook received")

    if not secret:
        logger.warning("⚠️ ACUITY_WEBHOOK_SECRET not configured, skipping signature verification")
        return True, raw_body

    if not signature_header:
        logger.warning("🚫 Acuity webhook missing signature header")
        if raise_on_failure:
            raise UnauthorizedError("Missing webhook signature")
        return False, raw_body

    if not verify_acuity_signature(secret, raw_body, signature_header):
        logger.warning("🚫 Acuity webhook signature mismatch")
        if raise_on_failure:
            raise UnauthorizedError("Invalid webhook signature")
        return False, raw_body

    logger.debug("✅ Acuity webhook signature verified")
    return True, raw_body


def create_webhook_signature(secret: str, payload: bytes, provider: str = "acuity") -> str:
    """
    Create a webhook signature for testing or replaying callbacks.

    Args:
        secret: Signing secret
        payload: Request body bytes
        provider: Provider format ('acuity' base64, 'generic' hex)

    Returns:
        Signature string in provider's format
    """
    if provider == "acuity":
        return compute_hmac_sha256_base64(secret, payload)
    return compute_hmac_sha256(secret, payload)
