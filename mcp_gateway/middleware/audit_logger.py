"""Audit trail for downstream tool calls and token lifecycle events.

Entries are written as one JSON object per line on stderr, wrapped as
``{"audit": {...}}`` so they can be filtered out of regular log output.
stdout stays reserved for the STDIO transport.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Literal, TextIO

from pydantic import BaseModel, Field

from mcp_gateway.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# Exact keys carrying credentials
_SECRET_KEYS = frozenset({"authorization", "code", "key", "signing_key", "api_key", "bearer"})
# Any key ending in one of these is treated as a credential too
_SECRET_SUFFIXES = ("token", "secret", "verifier", "signature", "password", "credential")


def redact(value: Any) -> Any:
    """Return a copy of ``value`` with credential-like entries replaced.

    Mappings are walked recursively, including those nested in lists.
    """
    if isinstance(value, dict):
        cleaned: dict[str, Any] = {}
        for k, v in value.items():
            name = str(k).lower()
            if name in _SECRET_KEYS or name.endswith(_SECRET_SUFFIXES):
                cleaned[k] = REDACTED
            else:
                cleaned[k] = redact(v)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


class AuditEntry(BaseModel):
    """One audit record."""

    kind: Literal["tool", "auth"]
    timestamp: int = Field(..., description="Epoch milliseconds")
    user_id: str
    tool_name: str
    action: str
    provider_id: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    result_status: Literal["success", "error"] | None = None
    error_message: str | None = None
    duration_ms: float | None = None


class AuditLogger:
    """Writes redacted audit entries to a stream (stderr by default)."""

    def __init__(
        self,
        enabled: bool = True,
        clock: Clock = now_ms,
        stream: TextIO | None = None,
    ) -> None:
        self._enabled = enabled
        self._clock = clock
        self._stream = stream
        logger.debug("Audit logging %s", "enabled" if enabled else "disabled")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def emit(self, entry: AuditEntry) -> None:
        """Write one entry, unless auditing is disabled."""
        if not self._enabled:
            return
        stream = self._stream or sys.stderr
        line = json.dumps({"audit": entry.model_dump(exclude_none=True)}, default=str)
        try:
            stream.write(line + "\n")
            stream.flush()
        except OSError as e:
            logger.error("Could not write audit entry for %s: %s", entry.tool_name, e)

    def log_tool_call(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        user_id: str = "default",
        provider_id: str | None = None,
        result_status: Literal["success", "error"] | None = None,
        error_message: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Record a downstream tool invocation.

        Args:
            tool_name: Gateway tool that was invoked.
            parameters: Tool arguments; credential-like keys are redacted.
            user_id: User the call was made for.
            provider_id: Upstream provider, when the tool targets one.
            result_status: ``"success"`` or ``"error"``.
            error_message: Failure description.
            duration_ms: Wall time spent in the tool.
        """
        self.emit(
            AuditEntry(
                kind="tool",
                timestamp=self._clock(),
                user_id=user_id,
                tool_name=tool_name,
                action="invoke",
                provider_id=provider_id,
                parameters=redact(parameters),
                result_status=result_status,
                error_message=error_message,
                duration_ms=duration_ms,
            )
        )

    def log_auth_event(
        self,
        event: str,
        user_id: str,
        provider_id: str,
        success: bool = True,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record a token lifecycle event (callback, refresh, revoke, schedule)."""
        self.emit(
            AuditEntry(
                kind="auth",
                timestamp=self._clock(),
                user_id=user_id,
                tool_name="auth",
                action=event,
                provider_id=provider_id,
                parameters=redact(details or {}),
                result_status="success" if success else "error",
            )
        )


__all__ = [
    "REDACTED",
    "AuditEntry",
    "AuditLogger",
    "redact",
]
