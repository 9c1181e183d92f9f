"""FastMCP server for the MCP gateway.

This module builds the downstream-facing FastMCP server for one ``Gateway``:

- Auth Tools (3): status, authorization URLs, logout
- Provider Tools (2): list upstream tools, call an upstream tool
- Agent Tools: ``gateway_run`` and one ``use_<provider>`` per provider,
  registered only when a planner is given

Two custom HTTP routes complete the OAuth and refresh flows:

- ``GET /oauth/callback``: the provider redirect target
- ``POST /auth/refresh/{provider_id}``: the signed scheduler callback
"""

from __future__ import annotations

import html
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from mcp_gateway.agent import GatewayAgent, Planner
from mcp_gateway.app import Gateway
from mcp_gateway.schemas.tools import (
    AuthorizeParams,
    AuthStatusParams,
    CallToolParams,
    ListToolsParams,
    LogoutParams,
    RunParams,
)
from mcp_gateway.scheduler.signing import SIGNATURE_HEADER
from mcp_gateway.tools import (
    gateway_authorize,
    gateway_call_tool,
    gateway_get_auth_status,
    gateway_list_tools,
    gateway_logout,
    gateway_run,
)
from mcp_gateway.utils.cancel import run_cancellable
from mcp_gateway.utils.errors import AuthenticationError, GatewayError, PublishError

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/oauth/callback"
REFRESH_PATH = "/auth/refresh/{provider_id}"


# =============================================================================
# Lifespan Context Manager
# =============================================================================


def _make_lifespan(gateway: Gateway):
    @asynccontextmanager
    async def server_lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        """Drop expired pending authorizations at startup."""
        logger.info("MCP gateway starting up...")
        try:
            expired = gateway.cleanup()
            if expired > 0:
                logger.info("Cleaned up %d expired pending authorizations", expired)
        except Exception as e:
            logger.warning("Error cleaning up pending authorizations: %s", e)
        logger.info("MCP gateway ready")

        yield {}

        logger.info("MCP gateway shutting down...")

    return server_lifespan


# =============================================================================
# HTTP Routes
# =============================================================================


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"<h1>{html.escape(title)}</h1>\n<p>{html.escape(body)}</p>",
        status_code=status_code,
    )


async def handle_oauth_callback(gateway: Gateway, request: Request) -> Response:
    """Complete an authorization-code flow and show a confirmation page."""
    params = request.query_params
    if params.get("error"):
        description = params.get("error_description") or params["error"]
        return _page("Authorization Error", f"Provider returned: {description}", 400)

    code = params.get("code")
    state = params.get("state")
    if not code or not state:
        return _page("Authorization Error", "Missing parameters", 400)

    try:
        result = await run_cancellable(gateway.tokens.handle_callback, code, state)
    except PublishError as e:
        logger.warning("Authorization stored but refresh scheduling failed: %s", e)
        return _page(
            "Authorization Complete",
            "Access was granted, but automatic renewal could not be scheduled. "
            "Close this window and retry your request.",
        )
    except GatewayError as e:
        status_code = 400 if isinstance(e, AuthenticationError) else 500
        logger.warning("OAuth callback failed: %s", e.code)
        return _page("Authorization Error", e.message, status_code)
    except Exception:
        logger.exception("Unexpected error handling OAuth callback")
        return _page("Error", "Unknown error", 500)

    return _page(
        "Authorization Complete",
        f"You have successfully authorized {result.provider_id}. "
        "Close this window and retry your request.",
    )


async def handle_refresh_trigger(gateway: Gateway, request: Request) -> Response:
    """Run a scheduled refresh after verifying the request signature."""
    if gateway.trigger is None:
        return JSONResponse({"error": "Refresh trigger not configured"}, status_code=404)

    provider_id = request.path_params.get("provider_id", "")
    raw_body = await request.body()
    try:
        response = await run_cancellable(
            gateway.trigger.handle,
            provider_id,
            raw_body,
            request.headers.get(SIGNATURE_HEADER),
        )
    except Exception:
        logger.exception("Unexpected error handling refresh trigger for %s", provider_id)
        return JSONResponse({"error": "Unknown error"}, status_code=500)
    return JSONResponse(response.body, status_code=response.status_code)


def _register_routes(mcp: FastMCP, gateway: Gateway) -> None:
    @mcp.custom_route(CALLBACK_PATH, methods=["GET"])
    async def _oauth_callback(request: Request) -> Response:
        """OAuth redirect target for every provider."""
        return await handle_oauth_callback(gateway, request)

    @mcp.custom_route(REFRESH_PATH, methods=["POST"])
    async def _refresh_trigger(request: Request) -> Response:
        """Signed scheduler callback refreshing one token."""
        return await handle_refresh_trigger(gateway, request)


# =============================================================================
# Tool Wrappers
# =============================================================================


def _register_auth_tools(mcp: FastMCP, gateway: Gateway) -> None:
    """Register authentication tools with the FastMCP server.

    Args:
        mcp: The FastMCP server instance.
        gateway: The gateway the tools operate on.
    """

    @mcp.tool(
        name="gateway_get_auth_status",
        annotations=ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
        ),
    )
    async def gateway_get_auth_status_tool(
        user_id: str | None = None, timeout_seconds: float | None = None
    ) -> dict[str, Any]:
        """Report which upstream providers the user is authenticated with.

        Args:
            user_id: User to report on (defaults to the configured user).
            timeout_seconds: Timeout for each refresh request.

        Returns:
            Provider list with an ``authenticated`` flag per provider.
        """
        return await gateway_get_auth_status(
            gateway, AuthStatusParams(user_id=user_id, timeout_seconds=timeout_seconds)
        )

    @mcp.tool(
        name="gateway_authorize",
        annotations=ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
        ),
    )
    async def gateway_authorize_tool(
        provider_ids: list[str] | None = None,
        user_id: str | None = None,
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        """Get authorization URLs for providers that still need the user's consent.

        The URLs must be opened by the user; this tool does not open a browser.

        Args:
            provider_ids: Providers to authorize (all configured when omitted).
            user_id: User to authorize for.
            timeout_seconds: Timeout for registration and refresh requests.

        Returns:
            ``{needsAuth, providers: {provider_id: url}}``.
        """
        return await gateway_authorize(
            gateway,
            AuthorizeParams(
                provider_ids=provider_ids, user_id=user_id, timeout_seconds=timeout_seconds
            ),
        )

    @mcp.tool(
        name="gateway_logout",
        annotations=ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
        ),
    )
    async def gateway_logout_tool(
        provider_id: str, user_id: str | None = None
    ) -> dict[str, Any]:
        """Remove the stored credentials for one provider.

        Args:
            provider_id: Provider to log out of.
            user_id: User to log out.

        Returns:
            ``{logged_out}`` confirmation.
        """
        return await gateway_logout(
            gateway, LogoutParams(provider_id=provider_id, user_id=user_id)
        )


def _register_provider_tools(mcp: FastMCP, gateway: Gateway) -> None:
    """Register upstream discovery and invocation tools.

    Args:
        mcp: The FastMCP server instance.
        gateway: The gateway the tools operate on.
    """

    @mcp.tool(
        name="gateway_list_tools",
        annotations=ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
        ),
    )
    async def gateway_list_tools_tool(
        provider_id: str | None = None,
        user_id: str | None = None,
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        """List tools exposed by upstream providers.

        Only authenticated providers are queried when no provider is given.

        Args:
            provider_id: Provider to list (all authenticated when omitted).
            user_id: User whose session is used.
            timeout_seconds: Timeout for each upstream request.

        Returns:
            Tools with their provider, description and input schema.
        """
        return await gateway_list_tools(
            gateway,
            ListToolsParams(
                provider_id=provider_id, user_id=user_id, timeout_seconds=timeout_seconds
            ),
        )

    @mcp.tool(
        name="gateway_call_tool",
        annotations=ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=True,
        ),
    )
    async def gateway_call_tool_tool(
        provider_id: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        user_id: str | None = None,
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        """Call a tool on an upstream provider.

        Args:
            provider_id: Provider hosting the tool.
            tool_name: Tool name as listed by gateway_list_tools.
            arguments: Tool arguments matching its input schema.
            user_id: User on whose behalf to call.
            timeout_seconds: Timeout for each upstream request.

        Returns:
            ``{providerId, tool, result}`` with the upstream result.
        """
        return await gateway_call_tool(
            gateway,
            CallToolParams(
                provider_id=provider_id,
                tool_name=tool_name,
                arguments=arguments or {},
                user_id=user_id,
                timeout_seconds=timeout_seconds,
            ),
        )


AGENT_ANNOTATIONS = ToolAnnotations(
    readOnlyHint=False,
    destructiveHint=True,
    idempotentHint=False,
    openWorldHint=True,
)


def _register_agent_tools(mcp: FastMCP, gateway: Gateway, planner: Planner) -> int:
    """Register ``gateway_run`` plus one ``use_<provider>`` tool per provider.

    Returns:
        The number of tools registered.
    """
    agent = gateway.agent(planner)

    @mcp.tool(name="gateway_run", annotations=AGENT_ANNOTATIONS)
    async def gateway_run_tool(
        prompt: str,
        provider_id: str | None = None,
        user_id: str | None = None,
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        """Carry out a request using whichever provider tools fit it.

        Args:
            prompt: What the user wants done.
            provider_id: Restrict the run to this provider.
            user_id: User on whose behalf to act.
            timeout_seconds: Timeout for each upstream request.

        Returns:
            One ``{providerId, tool, result}`` per executed step, or the
            authorization URLs to open first.
        """
        return await gateway_run(
            gateway,
            agent,
            RunParams(
                prompt=prompt,
                provider_id=provider_id,
                user_id=user_id,
                timeout_seconds=timeout_seconds,
            ),
        )

    for provider_id in gateway.providers:
        _register_provider_run_tool(mcp, gateway, agent, provider_id)
    return 1 + len(gateway.providers)


def _register_provider_run_tool(
    mcp: FastMCP, gateway: Gateway, agent: GatewayAgent, provider_id: str
) -> None:
    async def use_provider(
        prompt: str,
        user_id: str | None = None,
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        return await gateway_run(
            gateway,
            agent,
            RunParams(
                prompt=prompt,
                provider_id=provider_id,
                user_id=user_id,
                timeout_seconds=timeout_seconds,
            ),
        )

    mcp.add_tool(
        use_provider,
        name=f"use_{provider_id}",
        description=(
            f"Execute actions on {provider_id}. Provide a natural language "
            "description of what you want to do."
        ),
        annotations=AGENT_ANNOTATIONS,
    )


# =============================================================================
# Server Factory
# =============================================================================


def create_server(gateway: Gateway | None = None, planner: Planner | None = None) -> FastMCP:
    """Create and configure the FastMCP server instance.

    Args:
        gateway: Gateway to serve; built from the environment when omitted.
        planner: Optional planner enabling the ``gateway_run`` tool.

    Returns:
        Configured FastMCP server instance.
    """
    gateway = gateway or Gateway.from_env()

    server = FastMCP(
        name="mcp-gateway",
        lifespan=_make_lifespan(gateway),
    )

    _register_routes(server, gateway)
    _register_auth_tools(server, gateway)
    _register_provider_tools(server, gateway)
    tool_count = 5

    if planner is not None:
        tool_count += _register_agent_tools(server, gateway, planner)

    logger.info("MCP gateway server created with %d tools registered", tool_count)
    return server


__all__ = [
    "CALLBACK_PATH",
    "REFRESH_PATH",
    "create_server",
    "handle_oauth_callback",
    "handle_refresh_trigger",
]
