"""Configuration management for the dayplanner_lite server."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .timezone_utils import DEFAULT_TIMEZONE, is_valid_timezone, resolve_timezone_alias

logger = logging.getLogger(__name__)

# Occurrence matching tolerance between stored exception instants and recomputed rule instants
DEFAULT_EXCEPTION_TOLERANCE_MS = 60_000
# Hard cap on occurrences produced for a single master event per request
DEFAULT_MAX_OCCURRENCES = 10_000
# Hard cap on candidate instants scanned while walking a rule toward the window
DEFAULT_MAX_SCANNED_OCCURRENCES = 500_000
DEFAULT_MAX_WINDOW_DAYS = 366
DEFAULT_WINDOW_DAYS = 7
DEFAULT_SERVER_BIND = "0.0.0.0"  # nosec B104 - local service, bind address is configurable
DEFAULT_SERVER_PORT = 8080
DEFAULT_STORE_PATH = "events.json"


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Skips blank lines and ``#`` comments, strips single and double quotes from
    values. Returns an empty dict when the file does not exist or is unreadable.
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
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")
        if key:
            result[key] = val

    return result


def _int_from_env(name: str, cfg: dict[str, Any], key: str, *, minimum: int = 0) -> None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; ignoring", name, raw)
        return
    if value < minimum:
        logger.warning("Out of range %s=%r (minimum %d); ignoring", name, raw, minimum)
        return
    cfg[key] = value


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file into the environment without overriding existing variables.

        Returns:
            List of environment variable keys that were loaded from the .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        for key, val in parse_env_file(self.env_file_path).items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build configuration dictionary from environment variables.

        Recognizes:
        - DAYPLANNER_SERVER_BIND -> 'server_bind'
        - DAYPLANNER_SERVER_PORT -> 'server_port' (int)
        - DAYPLANNER_DEFAULT_TIMEZONE -> 'default_timezone'
        - DAYPLANNER_STORE_PATH -> 'store_path'
        - DAYPLANNER_EXCEPTION_TOLERANCE_MS -> 'exception_tolerance_ms' (int)
        - DAYPLANNER_MAX_OCCURRENCES -> 'max_occurrences' (int)
        - DAYPLANNER_MAX_SCANNED_OCCURRENCES -> 'max_scanned_occurrences' (int)
        - DAYPLANNER_MAX_WINDOW_DAYS -> 'max_window_days' (int)
        - DAYPLANNER_DEFAULT_WINDOW_DAYS -> 'default_window_days' (int)
        - DAYPLANNER_LOG_LEVEL -> 'log_level'
        """
        cfg: dict[str, Any] = {}

        host = os.environ.get("DAYPLANNER_SERVER_BIND")
        if host:
            cfg["server_bind"] = host

        _int_from_env("DAYPLANNER_SERVER_PORT", cfg, "server_port", minimum=1)

        default_tz = os.environ.get("DAYPLANNER_DEFAULT_TIMEZONE")
        if default_tz:
            if is_valid_timezone(default_tz):
                cfg["default_timezone"] = resolve_timezone_alias(default_tz)
            else:
                logger.warning("Invalid DAYPLANNER_DEFAULT_TIMEZONE=%r; ignoring", default_tz)

        store_path = os.environ.get("DAYPLANNER_STORE_PATH")
        if store_path:
            cfg["store_path"] = store_path

        _int_from_env("DAYPLANNER_EXCEPTION_TOLERANCE_MS", cfg, "exception_tolerance_ms")
        _int_from_env("DAYPLANNER_MAX_OCCURRENCES", cfg, "max_occurrences", minimum=1)
        _int_from_env(
            "DAYPLANNER_MAX_SCANNED_OCCURRENCES", cfg, "max_scanned_occurrences", minimum=1
        )
        _int_from_env("DAYPLANNER_MAX_WINDOW_DAYS", cfg, "max_window_days", minimum=1)
        _int_from_env("DAYPLANNER_DEFAULT_WINDOW_DAYS", cfg, "default_window_days", minimum=1)

        log_level = os.environ.get("DAYPLANNER_LOG_LEVEL")
        if log_level:
            cfg["log_level"] = log_level

        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Load .env file and build configuration from environment."""
        self.load_env_file()
        return self.build_config_from_env()


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and attribute-style objects."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)


@dataclass(frozen=True)
class PlannerSettings:
    """Typed view of the settings the expansion engine and HTTP layer consume."""

    default_timezone: str = DEFAULT_TIMEZONE
    exception_tolerance_ms: int = DEFAULT_EXCEPTION_TOLERANCE_MS
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES
    max_scanned_occurrences: int = DEFAULT_MAX_SCANNED_OCCURRENCES
    max_window_days: int = DEFAULT_MAX_WINDOW_DAYS
    default_window_days: int = DEFAULT_WINDOW_DAYS
    server_bind: str = DEFAULT_SERVER_BIND
    server_port: int = DEFAULT_SERVER_PORT
    store_path: str = DEFAULT_STORE_PATH

    @classmethod
    def from_config(cls, config: Any) -> PlannerSettings:
        """Build settings from a config dict or attribute-style object, using defaults for gaps."""
        return cls(
            default_timezone=get_config_value(config, "default_timezone", DEFAULT_TIMEZONE),
            exception_tolerance_ms=get_config_value(
                config, "exception_tolerance_ms", DEFAULT_EXCEPTION_TOLERANCE_MS
            ),
            max_occurrences=get_config_value(config, "max_occurrences", DEFAULT_MAX_OCCURRENCES),
            max_scanned_occurrences=get_config_value(
                config, "max_scanned_occurrences", DEFAULT_MAX_SCANNED_OCCURRENCES
            ),
            max_window_days=get_config_value(config, "max_window_days", DEFAULT_MAX_WINDOW_DAYS),
            default_window_days=get_config_value(config, "default_window_days", DEFAULT_WINDOW_DAYS),
            server_bind=get_config_value(config, "server_bind", DEFAULT_SERVER_BIND),
            server_port=get_config_value(config, "server_port", DEFAULT_SERVER_PORT),
            store_path=get_config_value(config, "store_path", DEFAULT_STORE_PATH),
        )
