"""Pydantic parameter models for gateway MCP tools.

Models are divided into two categories:

- Auth Tools: authorization status, authorization URLs and logout
- Provider Tools: discovery and invocation of upstream provider tools
"""

from typing import Any

from pydantic import BaseModel, Field

# =============================================================================
# Shared Fields
# =============================================================================


class GatewayToolParams(BaseModel):
    """Fields shared by every gateway tool."""

    user_id: str | None = Field(
        None,
        description="User on whose behalf to act (defaults to the configured user)",
    )
    timeout_seconds: float | None = Field(
        None,
        gt=0,
        description="Timeout for each outbound request (gateway default when omitted)",
    )


# =============================================================================
# Auth Tool Parameter Models
# =============================================================================


class AuthStatusParams(GatewayToolParams):
    """Parameters for gateway_get_auth_status tool."""


class AuthorizeParams(GatewayToolParams):
    """Parameters for gateway_authorize tool.

    Produces authorization URLs for providers the user has not yet
    authorized.
    """

    provider_ids: list[str] | None = Field(
        None,
        description="Providers to authorize (all configured when omitted)",
    )


class LogoutParams(GatewayToolParams):
    """Parameters for gateway_logout tool."""

    provider_id: str = Field(
        ...,
        min_length=1,
        description="Provider whose stored token is removed",
    )


# =============================================================================
# Provider Tool Parameter Models
# =============================================================================


class ListToolsParams(GatewayToolParams):
    """Parameters for gateway_list_tools tool."""

    provider_id: str | None = Field(
        None,
        description="Provider to list (all authenticated providers when omitted)",
    )


class CallToolParams(GatewayToolParams):
    """Parameters for gateway_call_tool tool."""

    provider_id: str = Field(..., min_length=1, description="Provider hosting the tool")
    tool_name: str = Field(..., min_length=1, description="Tool name on the provider")
    arguments: dict[str, Any] = Field(
        default_factory=dict,
        description="Tool arguments",
    )


class RunParams(GatewayToolParams):
    """Parameters for gateway_run tool.

    Plans and executes provider tool calls for a free-form prompt.
    """

    prompt: str = Field(..., min_length=1, description="What the user wants done")
    provider_id: str | None = Field(
        None,
        description="Restrict the plan to this provider (planner chooses when omitted)",
    )
