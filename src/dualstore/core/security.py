"""Signature utilities for inbound legacy webhooks."""
from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes | str, secret: str) -> str:
    """Return the hex HMAC-SHA256 digest of ``raw_body`` under ``secret``."""
    body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_hmac_signature(raw_body: bytes | str, signature: str, secret: str) -> bool:
    """Verify a webhook signature.

    Args:
        raw_body: Exact, unparsed request body that was signed by the sender.
        signature: Hex digest, either bare or prefixed with ``sha256=``.
        secret: Shared webhook secret.

    Returns:
        True if the signature matches; False for mismatches and malformed input.
    """
    try:
        normalized = signature.strip()
        if normalized.startswith(SIGNATURE_PREFIX):
            normalized = normalized[len(SIGNATURE_PREFIX):]
        provided = bytes.fromhex(normalized)
        expected = bytes.fromhex(compute_signature(raw_body, secret))
        return hmac.compare_digest(provided, expected)
    except (AttributeError, TypeError, ValueError):
        return False


def secrets_match(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison for shared-secret headers."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
