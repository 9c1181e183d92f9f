"""Command-line entry point: ``python -m mcp_gateway``.

Transport is chosen with ``TRANSPORT``:

- ``stdio`` (default): JSON-RPC over stdin/stdout
- ``sse`` / ``http``: uvicorn on ``HOST``:``PORT``; this also serves
  ``/oauth/callback`` and ``/auth/refresh/{provider_id}``
- ``streamable-http``: FastMCP's own streamable HTTP server
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger("mcp_gateway")

DEFAULT_PORT = 1337
_QUIET_LOGGERS = ("urllib3", "httpx")


def configure_logging() -> None:
    """Route all log records to stderr at the ``LOG_LEVEL`` level.

    stdout belongs to the STDIO transport, so nothing else may write there.
    Unknown level names fall back to INFO.
    """
    level = logging.getLevelNamesMapping().get(
        os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def validate_environment() -> bool:
    """Check the environment for settings that would fail at startup.

    Returns:
        False after logging the first problem found, True otherwise.
    """
    providers_file = os.getenv("GATEWAY_PROVIDERS_FILE")
    if providers_file and not Path(providers_file).is_file():
        logger.error("GATEWAY_PROVIDERS_FILE does not exist: %s", providers_file)
        return False

    # The webhook publisher and the inbound trigger share one signing key
    if os.getenv("REFRESH_WEBHOOK_URL") and not os.getenv("REFRESH_SIGNING_KEY"):
        logger.error("REFRESH_WEBHOOK_URL requires REFRESH_SIGNING_KEY")
        return False

    for name in ("HTTP_TIMEOUT_SECONDS", "PENDING_AUTH_TTL_SECONDS", "PORT"):
        raw = os.getenv(name)
        if raw is None:
            continue
        try:
            positive = float(raw) > 0
        except ValueError:
            positive = False
        if not positive:
            logger.error("%s must be a positive number, got %r", name, raw)
            return False

    return True


def serve(transport: str) -> None:
    """Build the server from the environment and run it on ``transport``."""
    from mcp_gateway.server import create_server
    from mcp_gateway.utils.errors import ConfigError

    try:
        mcp = create_server()
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    match transport:
        case "sse" | "http":
            import uvicorn

            host = os.getenv("HOST", "0.0.0.0")
            port = int(os.getenv("PORT", str(DEFAULT_PORT)))
            logger.info("Serving MCP gateway over SSE on %s:%d", host, port)
            uvicorn.run(mcp.sse_app(), host=host, port=port, log_level="info")
        case "streamable-http":
            logger.info("Serving MCP gateway over streamable HTTP")
            mcp.run(transport="streamable-http")
        case _:
            logger.info("Serving MCP gateway over STDIO")
            mcp.run(transport="stdio")


def main() -> None:
    """Load ``.env``, set up logging, validate and serve."""
    load_dotenv()
    configure_logging()

    if not validate_environment():
        logger.error("Refusing to start with an invalid environment")
        sys.exit(1)

    serve(os.getenv("TRANSPORT", "stdio").lower())


if __name__ == "__main__":
    main()
