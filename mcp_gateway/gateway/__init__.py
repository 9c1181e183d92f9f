"""Upstream protocol sessions: JSON-RPC codec and the session gateway."""

from mcp_gateway.gateway.client import PROTOCOL_VERSION, SESSION_HEADER, ProtocolSessionGateway
from mcp_gateway.gateway.codec import (
    RpcFailure,
    RpcSuccess,
    ToolDescriptor,
    decode_body,
    parse_rpc,
)

__all__ = [
    "PROTOCOL_VERSION",
    "SESSION_HEADER",
    "ProtocolSessionGateway",
    "RpcFailure",
    "RpcSuccess",
    "ToolDescriptor",
    "decode_body",
    "parse_rpc",
]
