"""Auth tools: status, authorization URLs and logout.

None of these tools opens a browser. Authorization URLs are returned to the
caller, which is responsible for showing them to the user.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mcp_gateway.auth.models import DEFAULT_ACCOUNT_ID
from mcp_gateway.schemas.tools import AuthorizeParams, AuthStatusParams, LogoutParams
from mcp_gateway.tools.base import error_response, execute_tool, ok_response
from mcp_gateway.utils.errors import GatewayError, ProviderNotFoundError

if TYPE_CHECKING:
    from mcp_gateway.app import Gateway

logger = logging.getLogger(__name__)


async def gateway_get_auth_status(
    gateway: Gateway, params: AuthStatusParams
) -> dict[str, Any]:
    """Report which configured providers the user is authenticated with.

    Providers without OAuth are always reported as authenticated. Checking an
    expired token refreshes it when a refresh token is on file.

    Returns:
        Success response with ``{user_id, providers: [{id, authenticated}]}``.
    """
    user_id = params.user_id or gateway.settings.default_user_id

    def _execute() -> dict[str, Any]:
        statuses = gateway.gate.provider_status(user_id, timeout=params.timeout_seconds)
        authenticated = sum(1 for s in statuses if s.authenticated)
        return ok_response(
            data={
                "user_id": user_id,
                "providers": [s.model_dump() for s in statuses],
            },
            message=f"{authenticated} of {len(statuses)} provider(s) authenticated",
            count=len(statuses),
        )

    try:
        return await execute_tool(
            gateway.audit,
            tool_name="gateway_get_auth_status",
            params=params.model_dump(),
            operation=_execute,
            user_id=user_id,
        )
    except GatewayError as e:
        logger.error("Auth status check failed: %s", e)
        return error_response(e)


async def gateway_authorize(gateway: Gateway, params: AuthorizeParams) -> dict[str, Any]:
    """Return authorization URLs for providers the user still has to authorize.

    Returns:
        Success response with ``{needsAuth, providers: {id: url}}``; the map
        is empty when every requested provider is already usable.
    """
    user_id = params.user_id or gateway.settings.default_user_id

    def _execute() -> dict[str, Any]:
        signal = gateway.gate.check(
            user_id, params.provider_ids, timeout=params.timeout_seconds
        )
        if signal is None:
            return ok_response(
                data={"needsAuth": False, "providers": {}},
                message="All requested providers are authorized.",
            )
        return ok_response(
            data=signal.model_dump(by_alias=True),
            message=(
                "Open the authorization URL for each provider to grant access: "
                + ", ".join(sorted(signal.providers))
            ),
            count=len(signal.providers),
        )

    try:
        return await execute_tool(
            gateway.audit,
            tool_name="gateway_authorize",
            params=params.model_dump(),
            operation=_execute,
            user_id=user_id,
        )
    except GatewayError as e:
        logger.error("Could not build authorization URLs: %s", e)
        return error_response(e)


async def gateway_logout(gateway: Gateway, params: LogoutParams) -> dict[str, Any]:
    """Remove the stored token for one provider.

    The token is deleted locally; the provider is not asked to revoke it.

    Returns:
        Success response with ``{logged_out}``.
    """
    user_id = params.user_id or gateway.settings.default_user_id

    def _execute() -> dict[str, Any]:
        if gateway.engine.get_provider(params.provider_id) is None:
            raise ProviderNotFoundError(
                f"Provider {params.provider_id} not found",
                details={"provider_id": params.provider_id},
            )

        had_token = (
            gateway.store.get_token(user_id, params.provider_id, DEFAULT_ACCOUNT_ID)
            is not None
        )
        gateway.tokens.revoke_token(user_id, params.provider_id)

        if had_token:
            return ok_response(
                data={"logged_out": True},
                message=f"Removed stored credentials for {params.provider_id}.",
            )
        return ok_response(
            data={"logged_out": False},
            message=f"No credentials were stored for {params.provider_id}.",
        )

    try:
        return await execute_tool(
            gateway.audit,
            tool_name="gateway_logout",
            params=params.model_dump(),
            operation=_execute,
            user_id=user_id,
            provider_id=params.provider_id,
        )
    except GatewayError as e:
        return error_response(e)


__all__ = [
    "gateway_authorize",
    "gateway_get_auth_status",
    "gateway_logout",
]
