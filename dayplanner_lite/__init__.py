"""dayplanner_lite - personal task/calendar backend with recurring-event expansion.

The package keeps top-level imports light; the aiohttp server and its
dependencies are only imported when ``run_server`` is called.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Honors the DAYPLANNER_DEBUG environment variable (truthy values: "1", "true",
    "yes", "on"), which forces DEBUG verbosity regardless of ``level_name``.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("DAYPLANNER_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output.
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message  (only the level is colorized)
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def run_server(args: Optional[object] = None) -> None:
    """Start the dayplanner_lite HTTP server.

    Loads configuration from the environment (and a ``.env`` file), applies
    command line overrides and blocks until the server shuts down.

    Args:
        args: Optional argparse namespace carrying ``port`` and ``store`` overrides
    """
    import logging
    import os

    _init_logging(os.environ.get("DAYPLANNER_LOG_LEVEL"))

    from .api.server import start_server
    from .core.config_manager import ConfigManager

    logger = logging.getLogger(__name__)

    cfg = ConfigManager().load_full_config()

    if args is not None:
        port = getattr(args, "port", None)
        if port is not None:
            try:
                cfg["server_port"] = int(port)
                logger.debug("Applied command line port override: %s", port)
            except (ValueError, TypeError) as e:
                logger.warning("Invalid port value from command line '%s': %s", port, e)
        store_path = getattr(args, "store", None)
        if store_path:
            cfg["store_path"] = store_path

    cfg_level = cfg.get("log_level")
    if isinstance(cfg_level, str):
        logger.info("Applying configured log_level=%s", cfg_level)
        logging.getLogger().setLevel(getattr(logging, cfg_level.upper(), logging.INFO))

    # Only surface a small set of config keys in diagnostics.
    logger.debug(
        "Resolved configuration (diagnostic): %s",
        {k: cfg.get(k) for k in ("server_bind", "server_port", "default_timezone", "store_path")},
    )

    start_server(cfg)
