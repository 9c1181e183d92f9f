"""Utility helpers for the MCP gateway.

This module exposes the gateway exception hierarchy and the clock helper
shared by the token lifecycle and scheduling code.
"""

from mcp_gateway.utils.errors import (
    AuthenticationError,
    AuthorizationRequiredError,
    ConfigError,
    GatewayError,
    InvalidStateError,
    MissingCodeVerifierError,
    NoRefreshTokenError,
    OperationCancelledError,
    PlanningError,
    ProtocolError,
    ProviderNotFoundError,
    PublishError,
    RegistrationError,
    SchedulingError,
    SessionInitError,
    SignatureInvalidError,
    TokenExchangeError,
    TokenRefreshError,
    ToolCallError,
    UnknownProviderError,
    UpstreamStatusError,
)
from mcp_gateway.utils.clock import Clock, now_ms

__all__ = [
    # Clock
    "Clock",
    "now_ms",
    # Exception hierarchy
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
