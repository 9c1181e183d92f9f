"""Pydantic schemas for the MCP gateway.

This module exports all tool parameter models for the gateway server.
"""

from mcp_gateway.schemas.tools import (
    # Auth tool params
    AuthorizeParams,
    AuthStatusParams,
    # Provider tool params
    CallToolParams,
    ListToolsParams,
    LogoutParams,
    RunParams,
)

__all__ = [
    "AuthStatusParams",
    "AuthorizeParams",
    "CallToolParams",
    "ListToolsParams",
    "LogoutParams",
    "RunParams",
]
