"""Shared plumbing for gateway MCP tools.

Every tool answers with the same envelope:

- success: ``{"status": "success", "data": ..., "message"?, "count"?}``
- failure: ``{"status": "error", "error": ..., "error_code": ..., **details}``

Tool bodies are synchronous (they talk to providers through ``requests``),
so ``execute_tool`` runs them in a cancellable worker thread and records one
audit entry per call.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from mcp_gateway.middleware.audit_logger import AuditLogger
from mcp_gateway.utils.cancel import run_cancellable
from mcp_gateway.utils.errors import GatewayError

T = TypeVar("T")

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


def ok_response(
    data: Any,
    message: str | None = None,
    count: int | None = None,
) -> dict[str, Any]:
    """Wrap a tool payload in the success envelope.

    ``message`` is dropped when empty and ``count`` when None.
    """
    response: dict[str, Any] = {"status": STATUS_SUCCESS, "data": data}
    if message:
        response["message"] = message
    if count is not None:
        response["count"] = count
    return response


def error_response(error: GatewayError) -> dict[str, Any]:
    """Render a gateway exception in the failure envelope.

    Subclass fields such as ``rpc_code`` or the authorization URLs of
    ``AuthorizationRequiredError`` come along through ``to_dict``.
    """
    return {"status": STATUS_ERROR, **error.to_dict()}


@contextmanager
def audited(
    audit: AuditLogger,
    tool_name: str,
    params: dict[str, Any],
    user_id: str,
    provider_id: str | None = None,
) -> Iterator[None]:
    """Time the enclosed block and write one audit entry when it exits."""
    started = time.perf_counter()
    failure: BaseException | None = None
    try:
        yield
    except BaseException as e:
        failure = e
        raise
    finally:
        audit.log_tool_call(
            tool_name=tool_name,
            parameters=params,
            user_id=user_id,
            provider_id=provider_id,
            result_status=STATUS_SUCCESS if failure is None else STATUS_ERROR,
            error_message=None if failure is None else str(failure),
            duration_ms=(time.perf_counter() - started) * 1000,
        )


async def execute_tool(
    audit: AuditLogger,
    tool_name: str,
    params: dict[str, Any],
    operation: Callable[[], T],
    user_id: str,
    provider_id: str | None = None,
) -> T:
    """Run a blocking tool body off the event loop under an audit entry.

    Exceptions raised by ``operation`` propagate unchanged after being
    recorded. Cancelling the caller stops ``operation`` before its next
    outbound request.
    """
    with audited(audit, tool_name, params, user_id, provider_id):
        return await run_cancellable(operation)


__all__ = [
    "STATUS_ERROR",
    "STATUS_SUCCESS",
    "audited",
    "error_response",
    "execute_tool",
    "ok_response",
]
