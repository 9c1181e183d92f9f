"""Gateway MCP tools package.

Tools are organized into two categories:

- Auth Tools: authorization status, authorization URLs and logout
- Provider Tools: discovery and invocation of upstream provider tools
"""

from mcp_gateway.tools.auth import (
    gateway_authorize,
    gateway_get_auth_status,
    gateway_logout,
)
from mcp_gateway.tools.base import (
    error_response,
    execute_tool,
    ok_response,
)
from mcp_gateway.tools.providers import (
    gateway_call_tool,
    gateway_list_tools,
    gateway_run,
)

__all__ = [
    # Base utilities
    "error_response",
    "execute_tool",
    "ok_response",
    # Auth tools
    "gateway_authorize",
    "gateway_get_auth_status",
    "gateway_logout",
    # Provider tools
    "gateway_call_tool",
    "gateway_list_tools",
    "gateway_run",
]
