"""taskcal - calendar and task engine with recurring-event expansion.

The package keeps top-level imports light; the engine lives in
``taskcal.domain.event_service`` and the CRUD service in ``taskcal.api``.
"""

__version__ = "0.1.0"

from typing import Any, Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Honors TASKCAL_DEBUG (truthy values: "1", "true", "yes", "on"), which forces
    DEBUG verbosity.
    """
    import logging
    import os
    import sys

    debug_env = os.environ.get("TASKCAL_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        try:
            from colorlog import ColoredFormatter

            # HH:MM:SS  LEVEL   logger.name: message (only the level is colorized)
            fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
            log_colors = {
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            }
            formatter: logging.Formatter = ColoredFormatter(
                fmt, datefmt="%H:%M:%S", log_colors=log_colors
            )
        except ImportError:
            fmt = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
            formatter = logging.Formatter(fmt, datefmt="%H:%M:%S")

        handler.setFormatter(formatter)
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def _load_config(args: Optional[Any]) -> dict[str, Any]:
    """Environment config with command line overrides applied."""
    import logging

    from .core.config_manager import ConfigManager

    logger = logging.getLogger(__name__)
    cfg = ConfigManager().load_full_config()

    if args is not None:
        host = getattr(args, "host", None)
        if host:
            cfg["server_bind"] = host
        port = getattr(args, "port", None)
        if port is not None:
            cfg["server_port"] = int(port)
            logger.debug("Applied command line port override: %d", cfg["server_port"])
        store = getattr(args, "store", None)
        if store:
            cfg["store_path"] = store
            cfg["use_remote_api"] = False

    return cfg


def run_server(args: Optional[Any] = None) -> None:
    """Start the CRUD HTTP service.

    Args:
        args: Optional parsed command line namespace with host/port/debug
    """
    import os

    _init_logging(os.environ.get("TASKCAL_LOG_LEVEL"))

    from .api.server import start_server
    from .logging_config import configure_logging

    configure_logging(debug_mode=bool(getattr(args, "debug", False)))
    start_server(_load_config(args))


def run_expand(args: Optional[Any] = None) -> list[dict[str, Any]]:
    """Materialize the stored events once and return them as records.

    Args:
        args: Optional parsed command line namespace with store/now/debug

    Returns:
        JSON-ready event records in start order
    """
    import asyncio
    import logging
    import os

    _init_logging(os.environ.get("TASKCAL_LOG_LEVEL"))

    from .core.http_client import close_all_clients
    from .core.settings import EngineSettings
    from .core.time_utils import parse_timestamp
    from .domain.event_service import EventService
    from .logging_config import configure_logging

    configure_logging(debug_mode=bool(getattr(args, "debug", False)))
    logger = logging.getLogger(__name__)

    settings = EngineSettings.from_settings(_load_config(args))
    now_text = getattr(args, "now", None)
    now = parse_timestamp(now_text) if now_text else None
    if now_text and now is None:
        logger.warning("Ignoring unparseable --now value: %s", now_text)

    async def _expand() -> list[dict[str, Any]]:
        service = EventService.from_settings(settings)
        try:
            events = await service.load_events(now=now)
        finally:
            await service.close()
            await close_all_clients()
        return [event.to_record() for event in events]

    return asyncio.run(_expand())
