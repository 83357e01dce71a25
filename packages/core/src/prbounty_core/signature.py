"""Webhook signature verification (GitHub ``X-Hub-Signature-256`` scheme)."""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def sign_payload(payload: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature GitHub would send for ``payload``."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(payload: bytes, signature: str | None, secret: str | None) -> bool:
    """Check ``signature`` against an HMAC of the exact raw payload bytes.

    A missing header or an unset secret is always a failure. The comparison is
    constant-time over bytes.
    """
    if not signature or not secret:
        return False
    expected = sign_payload(payload, secret).encode("utf-8")
    return hmac.compare_digest(signature.strip().encode("utf-8"), expected)
