"""Token store contract and an in-process implementation.

The gateway consumes tokens through the ``TokenStore`` protocol; durable
backends live outside this package. ``InMemoryTokenStore`` keeps tokens for
the lifetime of the process and is what local runs and tests use.

Tokens are keyed by (tenant, provider, account). The gateway uses the user ID
as the tenant and ``"default"`` as the account.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from mcp_gateway.auth.models import DEFAULT_ACCOUNT_ID, Token

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenStore(Protocol):
    """Storage backend for OAuth tokens."""

    def get_token(
        self, tenant: str, provider: str, account_id: str = DEFAULT_ACCOUNT_ID
    ) -> Token | None: ...

    def set_token(self, tenant: str, provider: str, account_id: str, token: Token) -> None: ...

    def revoke_token(self, tenant: str, provider: str, account_id: str) -> None: ...

    def get_accounts(self, tenant: str, provider: str) -> list[str]: ...


class InMemoryTokenStore:
    """Thread-safe, process-local token store.

    Example:
        >>> store = InMemoryTokenStore()
        >>> store.set_token("alice", "linear", "default", token)
        >>> store.get_token("alice", "linear").access_token
        'at-123'
    """

    def __init__(self) -> None:
        self._tokens: dict[tuple[str, str, str], Token] = {}
        self._lock = threading.Lock()

    def get_token(
        self, tenant: str, provider: str, account_id: str = DEFAULT_ACCOUNT_ID
    ) -> Token | None:
        with self._lock:
            token = self._tokens.get((tenant, provider, account_id))
        if token is None:
            logger.debug("No token for %s/%s/%s", tenant, provider, account_id)
        return token

    def set_token(self, tenant: str, provider: str, account_id: str, token: Token) -> None:
        with self._lock:
            self._tokens[(tenant, provider, account_id)] = token
        logger.debug("Stored token for %s/%s/%s", tenant, provider, account_id)

    def revoke_token(self, tenant: str, provider: str, account_id: str) -> None:
        with self._lock:
            removed = self._tokens.pop((tenant, provider, account_id), None)
        if removed is not None:
            logger.info("Deleted token for %s/%s/%s", tenant, provider, account_id)

    def get_accounts(self, tenant: str, provider: str) -> list[str]:
        with self._lock:
            return [
                account
                for (t, p, account) in self._tokens
                if t == tenant and p == provider
            ]


__all__ = [
    "InMemoryTokenStore",
    "TokenStore",
]
