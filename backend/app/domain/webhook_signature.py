"""Webhook signature verification.

Lemon Squeezy signs every delivery with HMAC-SHA256 over the raw request body and
sends the hex digest in the ``X-Signature`` header.
"""

import hashlib
import hmac

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Signature"


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 digest of ``raw_body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of ``signature`` against the body digest.

    Never raises: a malformed header (non-hex, wrong length, wrong type) is a
    plain verification failure.
    """
    try:
        expected = bytes.fromhex(compute_signature(raw_body, secret))
        supplied = bytes.fromhex(signature.strip())
        return hmac.compare_digest(expected, supplied)
    except (TypeError, ValueError, AttributeError) as exc:
        logger.warning("webhook_signature_malformed", error=str(exc))
        return False
