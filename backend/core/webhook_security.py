"""
Webhook signature validation.

Payout callbacks are signed with HMAC-SHA256 over the raw request body,
hex-encoded, using the merchant's shared secret.
"""

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def calculate_signature(secret: str, body: bytes) -> str:
    """Calculate the hex HMAC-SHA256 signature of a raw body."""
    return hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256,
    ).hexdigest()


def verify_hmac_signature(
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
) -> bool:
    """
    Check a webhook signature.

    Returns False for a missing secret, a missing signature or a mismatch.
    The caller decides how to reject; the reason is only logged here.
    """
    if not secret:
        logger.error("Webhook secret is not configured; rejecting callback")
        return False

    if not signature:
        logger.warning("Webhook rejected: missing signature header")
        return False

    expected = calculate_signature(secret, body)
    # Constant-time comparison on bytes; headers may carry non-ASCII text
    if not hmac.compare_digest(
        signature.strip().lower().encode("utf-8"), expected.encode("ascii")
    ):
        logger.warning("Webhook rejected: signature mismatch")
        return False

    return True
