"""Typed engine settings for taskcal."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .config_manager import ConfigManager, get_config_value

DEFAULT_RECURRENCE_WINDOW_DAYS = 365
DEFAULT_MAX_INSTANCES_PER_PARENT = 500
DEFAULT_EXPANSION_TIME_BUDGET_MS = 500
DEFAULT_WRITE_DEBOUNCE_MS = 50
DEFAULT_SERVER_PORT = 8080


@dataclass
class EngineSettings:
    """Configuration for the recurrence engine, storage and server.

    Consolidates all engine settings with explicit defaults.
    """

    # Expansion window: full width in days, split evenly around "now"
    recurrence_window_days: int = DEFAULT_RECURRENCE_WINDOW_DAYS
    max_instances_per_parent: int = DEFAULT_MAX_INSTANCES_PER_PARENT
    # Wall-clock limit on expanding one parent; 0 disables it
    expansion_time_budget_ms: int = DEFAULT_EXPANSION_TIME_BUDGET_MS

    # Storage
    store_path: Optional[str] = None
    use_remote_api: bool = False
    remote_api_url: Optional[str] = None
    write_debounce_ms: int = DEFAULT_WRITE_DEBOUNCE_MS

    # CRUD server
    server_bind: str = "127.0.0.1"
    server_port: int = DEFAULT_SERVER_PORT
    log_level: str = "INFO"

    @property
    def half_window_days(self) -> int:
        """Days on each side of "now" covered by the expansion window."""
        return max(self.recurrence_window_days // 2, 0)

    @classmethod
    def from_settings(cls, settings: Any) -> "EngineSettings":
        """Extract engine configuration from a dict or settings object.

        Args:
            settings: Configuration dict or object with engine settings

        Returns:
            EngineSettings with values from settings or defaults
        """
        defaults = cls()
        return cls(
            recurrence_window_days=int(
                get_config_value(settings, "recurrence_window_days", defaults.recurrence_window_days)
            ),
            max_instances_per_parent=int(
                get_config_value(
                    settings, "max_instances_per_parent", defaults.max_instances_per_parent
                )
            ),
            expansion_time_budget_ms=int(
                get_config_value(
                    settings, "expansion_time_budget_ms", defaults.expansion_time_budget_ms
                )
            ),
            store_path=get_config_value(settings, "store_path", defaults.store_path),
            use_remote_api=bool(get_config_value(settings, "use_remote_api", False)),
            remote_api_url=get_config_value(settings, "remote_api_url", defaults.remote_api_url),
            write_debounce_ms=int(
                get_config_value(settings, "write_debounce_ms", defaults.write_debounce_ms)
            ),
            server_bind=get_config_value(settings, "server_bind", defaults.server_bind),
            server_port=int(get_config_value(settings, "server_port", defaults.server_port)),
            log_level=get_config_value(settings, "log_level", defaults.log_level),
        )

    @classmethod
    def from_env(cls, env_file_path: Path | None = None) -> "EngineSettings":
        """Load settings from the environment and an optional .env file."""
        return cls.from_settings(ConfigManager(env_file_path).load_full_config())
