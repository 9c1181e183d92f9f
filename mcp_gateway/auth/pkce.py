"""PKCE and state helpers for the authorization-code flow."""

from __future__ import annotations

import base64
import hashlib
import secrets

from mcp_gateway.utils.errors import InvalidStateError

CODE_CHALLENGE_METHOD = "S256"


def base64url(data: bytes) -> str:
    """Encode bytes as unpadded base64url."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """Generate a PKCE code verifier from 32 random bytes (43 characters)."""
    return base64url(secrets.token_bytes(32))


def code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    return base64url(hashlib.sha256(verifier.encode("ascii")).digest())


def build_state(provider_id: str, user_id: str) -> str:
    """Build an OAuth state of the form ``providerId:userId:nonce``.

    The nonce is 32 random bytes rendered as 64 hex characters.
    """
    return f"{provider_id}:{user_id}:{secrets.token_hex(32)}"


def parse_state(state: str) -> tuple[str, str]:
    """Extract the provider and user IDs from an OAuth state.

    Raises:
        InvalidStateError: If either ID is missing.
    """
    parts = state.split(":")
    provider_id = parts[0] if parts else ""
    user_id = parts[1] if len(parts) > 1 else ""
    if not provider_id or not user_id:
        raise InvalidStateError(
            "Invalid state parameter",
            details={"hint": "Expected providerId:userId:nonce"},
        )
    return provider_id, user_id


__all__ = [
    "CODE_CHALLENGE_METHOD",
    "base64url",
    "build_state",
    "code_challenge",
    "generate_code_verifier",
    "parse_state",
]
