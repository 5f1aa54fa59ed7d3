"""Application bootstrap.

Loads settings, configures logging, wires the runtime and serves the
FastAPI app with uvicorn until interrupted.  Startup restore and the
final snapshot on shutdown run in the app lifespan.
"""

from __future__ import annotations

import logging
import socket
from typing import Any

import uvicorn

from .api.app import create_app
from .core.config import load_settings
from .observability.logger import setup_logging
from .runtime import build_runtime

logger = logging.getLogger(__name__)


def get_lan_ip() -> str:
    """Best-effort LAN address of this machine (for the startup banner)."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() only selects the outbound interface.
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


async def run(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> None:
    """Main entry point. Load config, wire components, serve."""

    # 1. Load settings
    settings = load_settings(config_path=config_path, overrides=overrides)

    # 2. Set up logging
    setup_logging(settings.observability.log_level, settings.observability.log_format)

    # 3. Wire components
    runtime = build_runtime(settings)
    app = create_app(runtime)

    host, port = settings.server.host, settings.server.port
    logger.info(
        "Starting drink-tracker on http://%s:%d (LAN: http://%s:%d)",
        host,
        port,
        get_lan_ip(),
        port,
    )
    logger.info(
        "Snapshots: dir=%s every %.0fs, keeping %d",
        settings.snapshot.directory,
        settings.snapshot.interval_seconds,
        settings.snapshot.max_files,
    )

    # 4. Serve; uvicorn handles SIGINT/SIGTERM and runs the lifespan
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        timeout_graceful_shutdown=5,
    )
    server = uvicorn.Server(config)
    await server.serve()
    logger.info("drink-tracker stopped")
