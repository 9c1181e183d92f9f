"""JSON-RPC envelope encoding and response decoding for provider endpoints.

Provider endpoints answer either with a plain JSON body or with a
``text/event-stream`` body. Event streams are decoded single-shot: the first
``data:`` frame is parsed as the response, nothing is read incrementally.

Decoded payloads are classified into ``RpcSuccess`` or ``RpcFailure`` so
callers never reach into raw dictionaries for ``result`` or ``error``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mcp_gateway.utils.errors import ProtocolError

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
EVENT_STREAM = "text/event-stream"
DATA_PREFIX = "data:"


def build_request(method: str, params: dict[str, Any], request_id: int | str) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 request envelope."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method, "params": params}


def build_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 notification (no ``id``)."""
    return {"jsonrpc": JSONRPC_VERSION, "method": method, "params": params or {}}


def _parse_json(text: str) -> Any:
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except ValueError as e:
        raise ProtocolError(
            "Provider returned a body that is not valid JSON",
            details={"body": text[:200]},
        ) from e


def decode_body(content_type: str | None, text: str) -> Any:
    """Decode a provider response body.

    Args:
        content_type: Value of the response ``Content-Type`` header.
        text: Response body as text.

    Returns:
        The decoded JSON value; an empty body decodes to ``{}``.

    Raises:
        ProtocolError: If the selected payload is not valid JSON.
    """
    if content_type and EVENT_STREAM in content_type.lower():
        for line in text.splitlines():
            if line.startswith(DATA_PREFIX):
                return _parse_json(line[len(DATA_PREFIX):].strip())
        logger.debug("Event stream without a data frame; decoding whole body")
    return _parse_json(text)


class RpcErrorBody(BaseModel):
    """The ``error`` member of a JSON-RPC response."""

    model_config = ConfigDict(extra="allow")

    code: int | None = None
    message: str = "Unknown error"
    data: Any = None


class RpcSuccess(BaseModel):
    """A JSON-RPC response carrying a result."""

    kind: Literal["success"] = "success"
    id: int | str | None = None
    result: dict[str, Any] = Field(default_factory=dict)


class RpcFailure(BaseModel):
    """A JSON-RPC response carrying an error."""

    kind: Literal["failure"] = "failure"
    id: int | str | None = None
    error: RpcErrorBody


RpcResponse = RpcSuccess | RpcFailure


def parse_rpc(payload: Any) -> RpcResponse:
    """Classify a decoded payload as a success or failure response.

    Missing fields default: a payload without ``error`` is a success whose
    ``result`` is ``{}`` when absent or not an object.
    """
    if not isinstance(payload, dict):
        return RpcSuccess()

    request_id = payload.get("id")
    if not isinstance(request_id, int | str):
        request_id = None

    error = payload.get("error")
    if error is not None:
        if not isinstance(error, dict):
            error = {"message": str(error)}
        try:
            body = RpcErrorBody.model_validate(error)
        except ValidationError:
            body = RpcErrorBody(message=str(error.get("message") or "Unknown error"))
        return RpcFailure(id=request_id, error=body)

    result = payload.get("result")
    return RpcSuccess(id=request_id, result=result if isinstance(result, dict) else {})


class ToolDescriptor(BaseModel):
    """A tool advertised by a provider's ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")


def parse_tools(result: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the ``tools`` array of a ``tools/list`` result, or ``[]``."""
    tools = result.get("tools")
    if not isinstance(tools, list):
        return []
    return tools


def to_descriptors(tools: list[Any]) -> list[ToolDescriptor]:
    """Normalise raw tool entries, dropping ones without a usable name."""
    descriptors: list[ToolDescriptor] = []
    for raw in tools:
        if not isinstance(raw, dict):
            continue
        try:
            descriptors.append(ToolDescriptor.model_validate(raw))
        except ValidationError:
            logger.debug("Skipping malformed tool entry: %s", raw.get("name"))
    return descriptors


__all__ = [
    "DATA_PREFIX",
    "EVENT_STREAM",
    "JSONRPC_VERSION",
    "RpcErrorBody",
    "RpcFailure",
    "RpcResponse",
    "RpcSuccess",
    "ToolDescriptor",
    "build_notification",
    "build_request",
    "decode_body",
    "parse_rpc",
    "parse_tools",
    "to_descriptors",
]
