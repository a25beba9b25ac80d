"""Central logging configuration for taskcal.

Quiets verbose third-party loggers while keeping taskcal's own diagnostics,
and stamps every record with the current request's correlation id.
"""

import logging
import os
from typing import Optional

DEBUG_ENV = "TASKCAL_DEBUG"
LOG_LEVEL_ENV = "TASKCAL_LOG_LEVEL"

_TRUTHY = ("1", "true", "yes", "on")


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record.

        Args:
            record: Log record to enhance

        Returns:
            True to allow record to be logged
        """
        # Import here to avoid pulling aiohttp in for pure engine use
        try:
            from .api.middleware import get_request_id

            record.request_id = get_request_id()
        except ImportError:
            record.request_id = "no-request-id"

        return True


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """Configure logger levels for taskcal.

    Args:
        debug_mode: Whether to enable debug logging for taskcal modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        TASKCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        TASKCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv(DEBUG_ENV, "").strip().lower() in _TRUTHY
    env_log_level = os.getenv(LOG_LEVEL_ENV, "").strip().upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    correlation_filter = CorrelationIdFilter()

    # Keep handlers installed by _init_logging (colored output)
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] [%(request_id)s] %(levelname)s - %(name)s - %(message)s")
        )
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, CorrelationIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(correlation_filter)

    logger_config: dict[str, int] = {
        "aiohttp.access": logging.WARNING,
        "aiohttp.server": logging.WARNING,
        "aiohttp.web": logging.INFO,
        "aiohttp.web_log": logging.WARNING,
        "httpx": logging.WARNING,
        "httpcore": logging.WARNING,
        "asyncio": logging.WARNING,
    }

    taskcal_level = logging.DEBUG if final_debug else logging.INFO
    for module in (
        "taskcal",
        "taskcal.calendar",
        "taskcal.storage",
        "taskcal.domain",
        "taskcal.api",
    ):
        logger_config[module] = taskcal_level

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for taskcal modules")
    else:
        root_logger.debug("Production logging configuration applied")


def get_logging_status() -> dict[str, str]:
    """Current levels of the root and key loggers."""
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("taskcal", "aiohttp.access", "httpx", "asyncio"):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
