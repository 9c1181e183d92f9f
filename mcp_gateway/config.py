"""Gateway configuration from environment variables and a providers file.

Environment variables:
    GATEWAY_BASE_URL: Public base URL; the OAuth redirect URI is
        ``{GATEWAY_BASE_URL}/oauth/callback``.
    GATEWAY_PROVIDERS_FILE: Path to a JSON array of provider configurations.
    HTTP_TIMEOUT_SECONDS: Default timeout for every outbound request.
    REFRESH_WEBHOOK_URL: Scheduler endpoint for refresh events.
    REFRESH_SIGNING_KEY: Shared secret signing scheduler traffic.
    PENDING_AUTH_TTL_SECONDS: Lifetime of an issued OAuth state.
    DEFAULT_USER_ID: User ID applied when a tool call names none.
    CLIENT_NAME: Client name used for registration and initialize.
    AUDIT_LOG: Set to false to disable audit logging.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from mcp_gateway.auth.models import ProviderConfig
from mcp_gateway.utils.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:1337"

_TRUE_VALUES = ("true", "1", "yes")


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in _TRUE_VALUES


def _env_number(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(
            f"{name} must be a number",
            details={"value": value},
        ) from e


class GatewaySettings(BaseModel):
    """Runtime settings for one gateway instance."""

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Public base URL")
    providers_file: str | None = Field(default=None, description="Providers JSON path")
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    refresh_webhook_url: str | None = Field(default=None)
    refresh_signing_key: str | None = Field(default=None)
    pending_auth_ttl_seconds: float = Field(default=600.0, gt=0)
    default_user_id: str = Field(default="default-user", min_length=1)
    client_name: str = Field(default="mcp-gateway", min_length=1)
    audit_log: bool = Field(default=True)

    @classmethod
    def from_env(cls) -> GatewaySettings:
        """Build settings from the process environment.

        Raises:
            ConfigError: If a value cannot be parsed.
        """
        try:
            return cls(
                base_url=os.getenv("GATEWAY_BASE_URL", DEFAULT_BASE_URL),
                providers_file=os.getenv("GATEWAY_PROVIDERS_FILE") or None,
                http_timeout_seconds=_env_number("HTTP_TIMEOUT_SECONDS", 30.0),
                refresh_webhook_url=os.getenv("REFRESH_WEBHOOK_URL") or None,
                refresh_signing_key=os.getenv("REFRESH_SIGNING_KEY") or None,
                pending_auth_ttl_seconds=_env_number("PENDING_AUTH_TTL_SECONDS", 600.0),
                default_user_id=os.getenv("DEFAULT_USER_ID", "default-user"),
                client_name=os.getenv("CLIENT_NAME", "mcp-gateway"),
                audit_log=_env_flag("AUDIT_LOG", True),
            )
        except ValidationError as e:
            raise ConfigError("Invalid gateway settings", details={"error": str(e)}) from e

    @property
    def scheduler_enabled(self) -> bool:
        """Whether refreshes are scheduled through the webhook publisher."""
        return bool(self.refresh_webhook_url and self.refresh_signing_key)

    @property
    def pending_auth_ttl_ms(self) -> int:
        return int(self.pending_auth_ttl_seconds * 1000)


_PROVIDERS_ADAPTER = TypeAdapter(list[ProviderConfig])


def parse_providers(data: object) -> dict[str, ProviderConfig]:
    """Validate provider definitions and index them by ID.

    Raises:
        ConfigError: If the data is malformed or IDs repeat.
    """
    try:
        providers = _PROVIDERS_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise ConfigError("Invalid provider configuration", details={"error": str(e)}) from e

    registry: dict[str, ProviderConfig] = {}
    for provider in providers:
        if provider.id in registry:
            raise ConfigError(
                f"Duplicate provider id {provider.id}",
                details={"provider_id": provider.id},
            )
        registry[provider.id] = provider
    return registry


def load_providers(path: str | Path) -> dict[str, ProviderConfig]:
    """Load the providers file.

    Args:
        path: Path to a JSON array of provider objects using the camelCase
            field names (``mcpUrl``, ``authUrl``, ``usePKCE``...).

    Returns:
        Providers keyed by ID, in file order.

    Raises:
        ConfigError: If the file is missing, not JSON, or invalid.
    """
    file_path = Path(path)
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(
            "Providers file not found", details={"path": str(file_path)}
        ) from e
    except (OSError, ValueError) as e:
        raise ConfigError(
            f"Could not read providers file: {e}", details={"path": str(file_path)}
        ) from e

    providers = parse_providers(data)
    logger.info("Loaded %d provider(s) from %s", len(providers), file_path)
    return providers


__all__ = [
    "DEFAULT_BASE_URL",
    "GatewaySettings",
    "load_providers",
    "parse_providers",
]
