"""HMAC-SHA256 request signing for the refresh scheduling webhook.

The signature is ``base64(HMAC-SHA256(signing_key, raw_body))`` and travels
in the ``X-Signature`` header. Verification must be done over the exact
bytes received, before any parsing.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

SIGNATURE_HEADER = "X-Signature"


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_body(signing_key: str | bytes, body: str | bytes) -> str:
    """Sign a raw request body.

    Args:
        signing_key: Shared secret.
        body: Exact request body.

    Returns:
        The base64-encoded HMAC-SHA256 digest.
    """
    digest = hmac.new(_as_bytes(signing_key), _as_bytes(body), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    signing_key: str | bytes, body: str | bytes, signature: str | None
) -> bool:
    """Check a signature against a raw request body in constant time.

    Returns:
        True if the signature matches, False if it is missing, malformed or
        does not match.
    """
    if not signature:
        return False
    try:
        provided = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    expected = hmac.new(_as_bytes(signing_key), _as_bytes(body), hashlib.sha256).digest()
    return hmac.compare_digest(expected, provided)


__all__ = [
    "SIGNATURE_HEADER",
    "sign_body",
    "verify_signature",
]
