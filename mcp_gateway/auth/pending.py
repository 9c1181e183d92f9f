"""Pending authorization table keyed by OAuth state.

Each authorization URL the gateway hands out records its state here, along
with the PKCE code verifier when the provider uses PKCE. A callback consumes
the entry exactly once; unconsumed entries expire after a TTL so abandoned
flows do not accumulate.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from mcp_gateway.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL_MS = 600_000


@dataclass(frozen=True)
class PendingAuthorization:
    """An issued, not yet consumed authorization state."""

    state: str
    code_verifier: str | None
    created_at: int


class PendingAuthorizations:
    """Thread-safe single-use table of issued OAuth states with TTL.

    Example:
        >>> pending = PendingAuthorizations()
        >>> pending.store("linear:alice:ab12", "verifier")
        >>> pending.consume("linear:alice:ab12").code_verifier
        'verifier'
        >>> pending.consume("linear:alice:ab12") is None
        True
    """

    def __init__(self, ttl_ms: int = DEFAULT_PENDING_TTL_MS, clock: Clock = now_ms) -> None:
        """Initialize the table.

        Args:
            ttl_ms: Milliseconds an issued state stays redeemable.
            clock: Source of the current epoch-millisecond time.
        """
        self._ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[str, PendingAuthorization] = {}
        self._lock = threading.Lock()

    def store(self, state: str, code_verifier: str | None) -> None:
        """Record an issued state and its optional PKCE verifier.

        Expired entries are dropped first, so the table never holds more
        than the states issued within one TTL.
        """
        entry = PendingAuthorization(
            state=state,
            code_verifier=code_verifier,
            created_at=self._clock(),
        )
        with self._lock:
            self._purge_expired_locked()
            self._entries[state] = entry
        logger.debug("Stored pending authorization for state %s...", state[:16])

    def consume(self, state: str) -> PendingAuthorization | None:
        """Remove and return the entry for ``state``.

        Returns:
            The pending entry, or None if the state was never issued, was
            already consumed, or has expired.
        """
        with self._lock:
            entry = self._entries.pop(state, None)

        if entry is None:
            return None
        if self._is_expired(entry):
            logger.info("Pending authorization for state %s... expired", state[:16])
            return None
        return entry

    def cleanup_expired(self) -> int:
        """Drop expired entries.

        Returns:
            The number of entries removed.
        """
        with self._lock:
            removed = self._purge_expired_locked()
        if removed:
            logger.debug("Removed %d expired pending authorizations", removed)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_expired_locked(self) -> int:
        expired = [s for s, e in self._entries.items() if self._is_expired(e)]
        for state in expired:
            del self._entries[state]
        return len(expired)

    def _is_expired(self, entry: PendingAuthorization) -> bool:
        return self._clock() - entry.created_at > self._ttl_ms


__all__ = [
    "DEFAULT_PENDING_TTL_MS",
    "PendingAuthorization",
    "PendingAuthorizations",
]
