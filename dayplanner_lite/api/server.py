"""dayplanner_lite.api.server: asyncio HTTP server for the planner API.

This module provides the server core that:
- builds the aiohttp application with the correlation-id middleware and event routes
- opens the JSON event store named by the configuration
- runs until SIGINT/SIGTERM and then shuts the runner down cleanly
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any

from aiohttp import web

from ..core.config_manager import PlannerSettings, get_config_value
from ..core.timezone_utils import now_utc
from ..domain.event_store import EventStore
from ..middleware import correlation_id_middleware
from ..planner_logging import configure_planner_logging
from .routes import register_event_routes, register_planning_routes

logger = logging.getLogger(__name__)

store_key = web.AppKey("store", EventStore)
settings_key = web.AppKey("settings", PlannerSettings)

MAX_PORT_ATTEMPTS = 10


def make_app(settings: PlannerSettings, store: EventStore, time_provider: Any = None) -> web.Application:
    """Create the aiohttp application wired to ``store``.

    Args:
        settings: Typed planner settings
        store: Event store backing the routes
        time_provider: Optional callable returning current UTC time (defaults to ``now_utc``)
    """
    app = web.Application(middlewares=[correlation_id_middleware])
    app[store_key] = store
    app[settings_key] = settings

    register_event_routes(
        app=app,
        store=store,
        settings=settings,
        time_provider=time_provider or now_utc,
    )
    register_planning_routes(app=app, store=store)

    async def _shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested")

    app.on_shutdown.append(_shutdown)
    return app


async def _start_site(runner: web.AppRunner, host: str, configured_port: int) -> int:
    """Bind the runner, trying successive ports when the configured one is taken."""
    for port_offset in range(MAX_PORT_ATTEMPTS):
        port = configured_port + port_offset
        site = web.TCPSite(runner, host=host, port=port)
        try:
            await site.start()
        except OSError as e:
            if "address already in use" not in str(e).lower():
                logger.exception("Failed to start server on %s:%d", host, port)
                raise
            logger.debug("Port %d in use, trying next port", port)
            continue

        if port != configured_port:
            logger.warning(
                "Configured port %d was in use, using port %d instead", configured_port, port
            )
        return port

    raise RuntimeError(
        f"No available port found in range {configured_port}-{configured_port + MAX_PORT_ATTEMPTS - 1}"
    )


async def _serve(config: Any, external_stop_event: asyncio.Event | None = None) -> None:
    """Run the HTTP server until signalled to stop.

    Args:
        config: Server configuration dict or attribute-style object
        external_stop_event: Optional event to signal shutdown. If provided,
            signal handlers are NOT registered (caller owns signal handling).
    """
    settings = PlannerSettings.from_config(config)
    store = EventStore(settings.store_path)
    logger.info("Event store %s opened with %d event(s)", store.path, store.count())

    app = make_app(settings, store)
    stop_event = external_stop_event or asyncio.Event()

    runner = web.AppRunner(app)
    await runner.setup()
    port = await _start_site(runner, settings.server_bind, int(settings.server_port))
    logger.info("Server started successfully on %s:%d", settings.server_bind, port)

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
    logger.info("Server shutdown complete")


def start_server(config: Any) -> None:
    """Start the asyncio event loop and HTTP server.

    Args:
        config: dict or attribute-style object with keys:
            - server_bind / server_port: listen address
            - store_path: JSON event store file
            - default_timezone, exception_tolerance_ms, max_occurrences,
              max_scanned_occurrences, max_window_days, default_window_days
            - debug_logging: enable debug logging for dayplanner_lite (bool)

    Blocks the calling thread until a SIGINT/SIGTERM is received.
    """
    debug_mode = bool(get_config_value(config, "debug_logging", False))
    configure_planner_logging(debug_mode=debug_mode)
    logger.info("Logging configuration applied: debug_mode=%s", debug_mode)

    try:
        logger.debug("Running asyncio event loop for server")
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
