"""Provider tools: discovery and invocation of upstream tools.

Tools of OAuth providers the user has not authorized are not listed. Calling
a tool on such a provider returns an ``AUTHORIZATION_REQUIRED`` error that
carries the authorization URL.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mcp_gateway.agent import GatewayAgent
from mcp_gateway.gateway.codec import to_descriptors
from mcp_gateway.schemas.tools import CallToolParams, ListToolsParams, RunParams
from mcp_gateway.tools.base import error_response, execute_tool, ok_response
from mcp_gateway.utils.errors import (
    AuthorizationRequiredError,
    GatewayError,
    ProtocolError,
    ProviderNotFoundError,
)

if TYPE_CHECKING:
    from mcp_gateway.app import Gateway

logger = logging.getLogger(__name__)


def _require_authorized(
    gateway: Gateway, user_id: str, provider_id: str, timeout: float | None
) -> None:
    signal = gateway.gate.check(user_id, [provider_id], timeout=timeout)
    if signal is not None:
        raise AuthorizationRequiredError(
            f"Authorization required for {provider_id}",
            providers=signal.providers,
        )


async def gateway_list_tools(gateway: Gateway, params: ListToolsParams) -> dict[str, Any]:
    """List upstream tools available to the user.

    With ``provider_id`` only that provider is queried. Otherwise every
    authenticated provider is queried; unauthenticated providers are
    reported under ``unauthenticated`` and per-provider failures under
    ``errors`` instead of failing the whole listing.

    Returns:
        Success response with ``{tools: [{provider_id, name, description,
        input_schema}], unauthenticated, errors}``.
    """
    user_id = params.user_id or gateway.settings.default_user_id

    def _execute() -> dict[str, Any]:
        if params.provider_id is not None:
            provider = gateway.providers.get(params.provider_id)
            if provider is None:
                raise ProviderNotFoundError(
                    f"Provider {params.provider_id} not found",
                    details={"provider_id": params.provider_id},
                )
            _require_authorized(gateway, user_id, provider.id, params.timeout_seconds)
            targets = [provider]
            unauthenticated: list[str] = []
        else:
            targets = []
            unauthenticated = []
            for provider in gateway.providers.values():
                if gateway.gate.is_authenticated(provider, user_id, params.timeout_seconds):
                    targets.append(provider)
                else:
                    unauthenticated.append(provider.id)

        tools: list[dict[str, Any]] = []
        errors: dict[str, dict[str, Any]] = {}
        for provider in targets:
            try:
                raw_tools = gateway.sessions.get_provider_tools(
                    provider, user_id, timeout=params.timeout_seconds
                )
            except ProtocolError as e:
                if params.provider_id is not None:
                    raise
                logger.warning("Listing tools of %s failed: %s", provider.id, e)
                errors[provider.id] = {"error": e.message, "error_code": e.code}
                continue
            for tool in to_descriptors(raw_tools):
                tools.append(
                    {
                        "provider_id": provider.id,
                        "name": tool.name,
                        "description": tool.description,
                        "input_schema": tool.input_schema,
                    }
                )

        return ok_response(
            data={
                "tools": tools,
                "unauthenticated": unauthenticated,
                "errors": errors,
            },
            message=f"Found {len(tools)} tool(s) across {len(targets)} provider(s)",
            count=len(tools),
        )

    try:
        return await execute_tool(
            gateway.audit,
            tool_name="gateway_list_tools",
            params=params.model_dump(),
            operation=_execute,
            user_id=user_id,
            provider_id=params.provider_id,
        )
    except GatewayError as e:
        return error_response(e)


async def gateway_call_tool(gateway: Gateway, params: CallToolParams) -> dict[str, Any]:
    """Invoke one tool on one provider.

    Upstream protocol errors are returned verbatim as ``TOOL_CALL_FAILED``
    with ``rpc_code`` and ``rpc_message``.

    Returns:
        Success response with ``{providerId, tool, result}``.
    """
    user_id = params.user_id or gateway.settings.default_user_id

    def _execute() -> dict[str, Any]:
        if params.provider_id not in gateway.providers:
            raise ProviderNotFoundError(
                f"Provider {params.provider_id} not found",
                details={"provider_id": params.provider_id},
            )
        _require_authorized(
            gateway, user_id, params.provider_id, params.timeout_seconds
        )

        result = gateway.sessions.execute_provider_tool(
            params.provider_id,
            params.tool_name,
            params.arguments,
            user_id,
            gateway.providers,
            timeout=params.timeout_seconds,
        )
        return ok_response(
            data={
                "providerId": params.provider_id,
                "tool": params.tool_name,
                "result": result,
            },
        )

    try:
        return await execute_tool(
            gateway.audit,
            tool_name="gateway_call_tool",
            params=params.model_dump(),
            operation=_execute,
            user_id=user_id,
            provider_id=params.provider_id,
        )
    except GatewayError as e:
        logger.warning(
            "Call to %s.%s failed: %s", params.provider_id, params.tool_name, e.code
        )
        return error_response(e)


async def gateway_run(
    gateway: Gateway, agent: GatewayAgent, params: RunParams
) -> dict[str, Any]:
    """Plan and execute provider tool calls for a prompt.

    Returns:
        Success response with one ``{providerId, tool, result}`` per step, or
        an ``AUTHORIZATION_REQUIRED`` error listing URLs to open first.
    """
    user_id = params.user_id or gateway.settings.default_user_id

    def _execute() -> dict[str, Any]:
        results = agent.execute(
            params.prompt,
            user_id,
            timeout=params.timeout_seconds,
            provider_id=params.provider_id,
        )
        return ok_response(
            data=[r.model_dump(by_alias=True) for r in results],
            count=len(results),
        )

    try:
        return await execute_tool(
            gateway.audit,
            tool_name="gateway_run",
            params=params.model_dump(),
            operation=_execute,
            user_id=user_id,
            provider_id=params.provider_id,
        )
    except GatewayError as e:
        return error_response(e)


__all__ = [
    "gateway_call_tool",
    "gateway_list_tools",
    "gateway_run",
]
