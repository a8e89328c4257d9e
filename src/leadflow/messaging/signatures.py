"""Inbound webhook verification."""

import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """Signature header value for ``payload``."""
    digest = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """Verify an ``X-Hub-Signature-256`` header against the raw request body.

    Missing secrets, missing headers and headers without the ``sha256=``
    prefix all fail verification.
    """
    if not secret or not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False

    return hmac.compare_digest(compute_signature(payload, secret).encode(), signature.encode())


def verify_handshake(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    verify_token: str
) -> Optional[str]:
    """Subscription handshake; returns the challenge to echo or None."""
    if not verify_token or mode != "subscribe" or token is None:
        return None
    if hmac.compare_digest(token.encode(), verify_token.encode()):
        return challenge or ""
    return None
