"""Webhook payload signatures: HMAC-SHA256 over the exact request body.

Receivers recompute the digest with their endpoint secret and compare in
constant time; a missing secret or header never verifies.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Payflow-Signature"
_SCHEME = "sha256"


def sign_payload(secret: str, body: bytes) -> str:
    """Return the signature header value for ``body``."""

    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{_SCHEME}={digest}"


def verify_signature(secret: str, body: bytes, signature_header: str | None) -> bool:
    if not secret or not signature_header:
        return False
    scheme, _, provided = signature_header.strip().partition("=")
    if scheme != _SCHEME or not provided:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided)
