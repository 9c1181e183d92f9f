"""Middleware module for the MCP gateway."""

from mcp_gateway.middleware.audit_logger import AuditEntry, AuditLogger, redact

__all__ = [
    "AuditLogger",
    "AuditEntry",
    "redact",
]
