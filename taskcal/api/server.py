"""aiohttp server for the event collection CRUD service.

The service keeps records in memory and is deliberately dumb: no
sanitization and no recurrence logic. ``RemoteApiBackend`` talks to it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any, Optional

from aiohttp import web

from ..core.config_manager import get_config_value
from ..core.http_client import close_all_clients
from ..core.settings import DEFAULT_SERVER_PORT
from ..core.time_utils import now_local
from .mem_storage import MemStorage
from .middleware import correlation_id_middleware
from .routes import register_event_routes

logger = logging.getLogger(__name__)


def make_app(storage: Optional[MemStorage] = None) -> web.Application:
    """Create the aiohttp application with routes and middleware.

    Args:
        storage: Record collection; a fresh empty one if omitted

    Returns:
        Configured web.Application
    """
    app = web.Application(middlewares=[correlation_id_middleware])
    register_event_routes(app, storage if storage is not None else MemStorage(), now_local)

    async def _shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested")

    app.on_shutdown.append(_shutdown)
    return app


async def _serve(
    config: Any,
    storage: Optional[MemStorage] = None,
    external_stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Run the server until signalled to stop.

    Args:
        config: Dict or settings object with server_bind / server_port
        storage: Record collection to serve
        external_stop_event: Optional event to signal shutdown. If provided,
            signal handlers are not installed.
    """
    stop_event = external_stop_event or asyncio.Event()

    app = make_app(storage)
    runner = web.AppRunner(app)
    await runner.setup()

    host = get_config_value(config, "server_bind", "127.0.0.1")
    port = int(get_config_value(config, "server_port", DEFAULT_SERVER_PORT))
    site = web.TCPSite(runner, host=host, port=port)
    try:
        await site.start()
    except OSError:
        logger.exception("Failed to start server on %s:%d", host, port)
        await runner.cleanup()
        raise

    logger.info("Server started on http://%s:%d", host, port)

    if external_stop_event is None:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)
    else:
        logger.debug("Using external stop event - skipping signal handler registration")

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    await runner.cleanup()
    await close_all_clients()
    logger.info("Server shutdown complete")


def start_server(config: Any, storage: Optional[MemStorage] = None) -> None:
    """Start the asyncio event loop and HTTP server.

    Blocks until SIGINT/SIGTERM is received.

    Args:
        config: Dict or settings object with keys:
            - server_bind: host to bind (str)
            - server_port: port (int)
        storage: Record collection to serve
    """
    try:
        asyncio.run(_serve(config, storage))
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
