"""Custom exception hierarchy for the MCP gateway.

This module defines a closed, structured exception hierarchy for the error
conditions that can occur while authorizing against upstream providers,
scheduling token refreshes, and talking to provider protocol endpoints.

Every exception carries a stable, machine-readable ``code`` so callers can
branch on the kind of failure without inspecting message strings.
"""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base exception for all MCP gateway errors.

    Attributes:
        code: Stable machine-readable error code (class-level).
        message: Human-readable error description.
        details: Optional dictionary containing additional error context.
    """

    code = "GATEWAY_ERROR"

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a JSON-serializable dictionary."""
        return {"error": self.message, "error_code": self.code, **self.details}


class ConfigError(GatewayError):
    """Raised when gateway or provider configuration is unusable.

    Examples:
        - No client ID configured and no registration endpoint available
        - Providers file is missing or malformed
    """

    code = "CONFIG_ERROR"


# =============================================================================
# OAuth / Token Errors
# =============================================================================


class AuthenticationError(GatewayError):
    """Base class for OAuth flow and token lifecycle errors."""

    code = "AUTHENTICATION_ERROR"


class UpstreamStatusError(AuthenticationError):
    """Authentication error carrying the upstream HTTP status.

    Attributes:
        status_code: HTTP status returned by the upstream, or None if the
            request never completed.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class UnknownProviderError(AuthenticationError):
    """Raised when a provider has no OAuth configuration."""

    code = "UNKNOWN_PROVIDER"


class InvalidStateError(AuthenticationError):
    """Raised when an OAuth state parameter cannot be parsed or was not issued."""

    code = "INVALID_STATE"


class MissingCodeVerifierError(AuthenticationError):
    """Raised when no PKCE verifier is pending for a callback state."""

    code = "MISSING_CODE_VERIFIER"


class TokenExchangeError(UpstreamStatusError):
    """Raised when the authorization-code exchange is rejected upstream."""

    code = "TOKEN_EXCHANGE_FAILED"


class TokenRefreshError(UpstreamStatusError):
    """Raised when a refresh-token exchange is rejected upstream."""

    code = "TOKEN_REFRESH_FAILED"


class RegistrationError(UpstreamStatusError):
    """Raised when dynamic client registration is rejected upstream."""

    code = "REGISTRATION_FAILED"


class NoRefreshTokenError(AuthenticationError):
    """Raised when a refresh is requested but no refresh token is on file."""

    code = "NO_REFRESH_TOKEN"


class AuthorizationRequiredError(AuthenticationError):
    """Raised when required providers are not authenticated.

    Attributes:
        providers: Mapping of provider ID to authorization URL.
    """

    code = "AUTHORIZATION_REQUIRED"

    def __init__(
        self,
        message: str,
        providers: dict[str, str],
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.providers = providers

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["needs_auth"] = True
        data["providers"] = dict(self.providers)
        return data


# =============================================================================
# Protocol Errors
# =============================================================================


class ProtocolError(GatewayError):
    """Base class for upstream protocol session errors."""

    code = "PROTOCOL_ERROR"


class ProviderNotFoundError(ProtocolError):
    """Raised when a provider ID is not in the registry."""

    code = "PROVIDER_NOT_FOUND"


class SessionInitError(ProtocolError):
    """Raised when the upstream rejects the initialize handshake."""

    code = "SESSION_INIT_FAILED"


class ToolCallError(ProtocolError):
    """Raised when the upstream returns a protocol-level error for a call.

    The upstream code and message are preserved verbatim.

    Attributes:
        rpc_code: JSON-RPC error code from the upstream, if any.
        rpc_message: JSON-RPC error message from the upstream.
    """

    code = "TOOL_CALL_FAILED"

    def __init__(
        self,
        message: str,
        rpc_code: int | None = None,
        rpc_message: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.rpc_code = rpc_code
        self.rpc_message = rpc_message

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["rpc_code"] = self.rpc_code
        data["rpc_message"] = self.rpc_message
        return data


class PlanningError(GatewayError):
    """Raised when the planner cannot choose providers or tools for a prompt."""

    code = "PLANNING_FAILED"


class OperationCancelledError(GatewayError):
    """Raised inside a worker when its caller cancelled the operation."""

    code = "CANCELLED"


# =============================================================================
# Scheduling Errors
# =============================================================================


class SchedulingError(GatewayError):
    """Base class for refresh scheduling errors."""

    code = "SCHEDULING_ERROR"


class SignatureInvalidError(SchedulingError):
    """Raised when an inbound signed request fails verification."""

    code = "SIGNATURE_INVALID"


class PublishError(SchedulingError):
    """Raised when a refresh schedule event cannot be published.

    Attributes:
        status_code: HTTP status from the scheduler endpoint, if any.
    """

    code = "PUBLISH_FAILED"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


__all__ = [
    "GatewayError",
    "ConfigError",
    "AuthenticationError",
    "UpstreamStatusError",
    "UnknownProviderError",
    "InvalidStateError",
    "MissingCodeVerifierError",
    "TokenExchangeError",
    "TokenRefreshError",
    "RegistrationError",
    "NoRefreshTokenError",
    "AuthorizationRequiredError",
    "ProtocolError",
    "ProviderNotFoundError",
    "SessionInitError",
    "ToolCallError",
    "PlanningError",
    "OperationCancelledError",
    "SchedulingError",
    "SignatureInvalidError",
    "PublishError",
]
