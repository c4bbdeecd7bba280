"""
Central logging configuration for dayplanner_lite.

Suppresses verbose debug output from third-party libraries while keeping the
planner's own modules at the requested verbosity, and stamps every record with
the current request correlation id.
"""

import logging
import os
from typing import Optional


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to all log records for request tracing."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record.

        Args:
            record: Log record to enhance

        Returns:
            True to allow record to be logged
        """
        # Imported here to avoid pulling aiohttp in at logging setup time
        from .middleware import get_request_id

        record.request_id = get_request_id()
        return True


def configure_planner_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for dayplanner_lite.

    Args:
        debug_mode: Whether to enable debug logging for dayplanner_lite modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        DAYPLANNER_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        DAYPLANNER_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("DAYPLANNER_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("DAYPLANNER_LOG_LEVEL", "").upper()

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

    # Keep any colorized handler installed by _init_logging
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        formatter = logging.Formatter(
            "[%(asctime)s] [%(request_id)s] %(levelname)s - %(name)s - %(message)s"
        )
        handler.setFormatter(formatter)
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
        "asyncio": logging.WARNING,
    }

    planner_level = logging.DEBUG if final_debug else logging.INFO
    planner_modules = [
        "dayplanner_lite",
        "dayplanner_lite.api",
        "dayplanner_lite.calendar",
        "dayplanner_lite.domain",
    ]
    for module in planner_modules:
        logger_config[module] = planner_level

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for dayplanner_lite modules.")
    else:
        root_logger.info("Production logging configuration applied.")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}

    for logger_name in ("dayplanner_lite", "aiohttp.access", "aiohttp.server", "asyncio"):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)

    return status
