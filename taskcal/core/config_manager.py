"""Configuration management for taskcal."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()

        if not line or line.startswith("#"):
            continue

        if "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")

        if key:
            result[key] = val

    return result


def _env_int(name: str, cfg: dict[str, Any], key: str) -> None:
    raw = os.environ.get(name)
    if not raw:
        return
    try:
        cfg[key] = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; ignoring", name, raw)


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        parsed = parse_env_file(self.env_file_path)

        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build configuration dictionary from environment variables.

        Recognizes:
        - TASKCAL_STORE_PATH -> 'store_path'
        - TASKCAL_REMOTE_API_URL -> 'remote_api_url'
        - TASKCAL_USE_REMOTE_API -> 'use_remote_api' (bool)
        - TASKCAL_RECURRENCE_WINDOW_DAYS -> 'recurrence_window_days' (int)
        - TASKCAL_MAX_INSTANCES_PER_PARENT -> 'max_instances_per_parent' (int)
        - TASKCAL_EXPANSION_TIME_BUDGET_MS -> 'expansion_time_budget_ms' (int)
        - TASKCAL_WRITE_DEBOUNCE_MS -> 'write_debounce_ms' (int)
        - TASKCAL_SERVER_BIND -> 'server_bind'
        - TASKCAL_SERVER_PORT -> 'server_port' (int)
        - TASKCAL_LOG_LEVEL -> 'log_level'

        Returns:
            Configuration dictionary
        """
        cfg: dict[str, Any] = {}

        store_path = os.environ.get("TASKCAL_STORE_PATH")
        if store_path:
            cfg["store_path"] = store_path

        remote_url = os.environ.get("TASKCAL_REMOTE_API_URL")
        if remote_url:
            cfg["remote_api_url"] = remote_url.rstrip("/")

        use_remote = os.environ.get("TASKCAL_USE_REMOTE_API")
        if use_remote:
            cfg["use_remote_api"] = use_remote.strip().lower() in _TRUTHY

        _env_int("TASKCAL_RECURRENCE_WINDOW_DAYS", cfg, "recurrence_window_days")
        _env_int("TASKCAL_MAX_INSTANCES_PER_PARENT", cfg, "max_instances_per_parent")
        _env_int("TASKCAL_EXPANSION_TIME_BUDGET_MS", cfg, "expansion_time_budget_ms")
        _env_int("TASKCAL_WRITE_DEBOUNCE_MS", cfg, "write_debounce_ms")

        host = os.environ.get("TASKCAL_SERVER_BIND")
        if host:
            cfg["server_bind"] = host

        _env_int("TASKCAL_SERVER_PORT", cfg, "server_port")

        log_level = os.environ.get("TASKCAL_LOG_LEVEL")
        if log_level:
            cfg["log_level"] = log_level.upper()

        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Load .env file and build configuration from environment.

        Returns:
            Configuration dictionary
        """
        self.load_env_file()
        return self.build_config_from_env()


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and dataclass-like objects.

    Args:
        config: Configuration object (dict or object with attributes)
        key: Configuration key to retrieve
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    if config is None:
        return default
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
