"""Event API routes for dayplanner_lite."""

from __future__ import annotations

import asyncio
import contextvars
import datetime
import logging
from collections.abc import Callable

from aiohttp import web
from pydantic import ValidationError

from ...calendar.errors import EventNotFoundError, InvalidWindowError, TaskNotFoundError
from ...calendar.models import EventCreate, EventUpdate, ExceptionCreate
from ...core.config_manager import PlannerSettings
from ...core.timezone_utils import parse_iso_instant, serialize_iso
from ...domain.event_store import EventStore
from ...domain.expansion import ExpansionResult, expand_events
from ...domain.reminders import build_reminder_schedule
from .payloads import read_payload, validation_response

logger = logging.getLogger(__name__)


def _not_found() -> web.Response:
    return web.json_response({"error": "Event not found"}, status=404)


def register_event_routes(
    app: web.Application,
    store: EventStore,
    settings: PlannerSettings,
    time_provider: Callable[[], datetime.datetime],
) -> None:
    """Register event, exception, reminder and health routes.

    Args:
        app: aiohttp web application
        store: Event store backing every route
        settings: Expansion caps, tolerance and default window length
        time_provider: Callable returning the current UTC time
    """

    def parse_window(request: web.Request) -> tuple[datetime.datetime, datetime.datetime]:
        """Window from ``start``/``end`` query params; raises ValueError when malformed."""
        raw_start = request.query.get("start")
        raw_end = request.query.get("end")
        start = parse_iso_instant(raw_start) if raw_start else time_provider()
        if raw_end:
            end = parse_iso_instant(raw_end)
        else:
            try:
                end = start + datetime.timedelta(days=settings.default_window_days)
            except OverflowError:
                raise ValueError("default window runs past the supported date range") from None
        return start, end

    async def expand_window(request: web.Request) -> ExpansionResult:
        start, end = parse_window(request)
        masters = store.list_events_for_window(start, end)
        # Rule evaluation is CPU-bound; keep it off the event loop. The copied
        # context carries the request id into the worker thread
        ctx = contextvars.copy_context()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, ctx.run, expand_events, masters, start, end, settings
        )

    async def health_check(_request: web.Request) -> web.Response:
        """Liveness check with the stored event count."""
        return web.json_response(
            {
                "ok": True,
                "events": store.count(),
                "server_time_iso": serialize_iso(time_provider()),
            }
        )

    async def list_events(request: web.Request) -> web.Response:
        """Expanded events and occurrences whose start lies in the requested window."""
        try:
            result = await expand_window(request)
        except ValueError:
            return web.json_response({"error": "Invalid start or end date"}, status=400)
        except InvalidWindowError as exc:
            return web.json_response({"error": str(exc)}, status=400)

        logger.debug(
            "/events %s..%s -> %d item(s) from %d event(s)",
            serialize_iso(result.window_start),
            serialize_iso(result.window_end),
            len(result.instances),
            result.events_in,
        )

        headers = {}
        if result.degraded_event_ids:
            headers["X-Expansion-Degraded"] = ",".join(result.degraded_event_ids)
        if result.partial_event_ids:
            headers["X-Expansion-Partial"] = ",".join(result.partial_event_ids)
        if result.failed_event_ids:
            headers["X-Expansion-Failed"] = ",".join(result.failed_event_ids)
        return web.json_response(result.to_api_list(), headers=headers)

    async def create_event(request: web.Request) -> web.Response:
        payload = await read_payload(request, EventCreate)
        if isinstance(payload, web.Response):
            return payload
        try:
            event = store.add_event(payload)
        except TaskNotFoundError as exc:
            return web.json_response({"error": str(exc)}, status=400)
        except OSError:
            logger.exception("Failed to persist new event")
            return web.json_response({"error": "failed to store event"}, status=500)
        return web.json_response({"ok": True, "event": event.to_api_dict()})

    async def get_event(request: web.Request) -> web.Response:
        try:
            event = store.get_event(request.match_info["event_id"])
        except EventNotFoundError:
            return _not_found()
        return web.json_response({"event": event.to_api_dict()})

    async def update_event(request: web.Request) -> web.Response:
        event_id = request.match_info["event_id"]
        payload = await read_payload(request, EventUpdate)
        if isinstance(payload, web.Response):
            return payload
        try:
            event = store.update_event(event_id, payload)
        except EventNotFoundError:
            return _not_found()
        except TaskNotFoundError as exc:
            return web.json_response({"error": str(exc)}, status=400)
        except ValidationError as exc:
            return validation_response(exc)
        except OSError:
            logger.exception("Failed to persist update of event %s", event_id)
            return web.json_response({"error": "failed to store event"}, status=500)
        return web.json_response({"ok": True, "event": event.to_api_dict()})

    async def delete_event(request: web.Request) -> web.Response:
        event_id = request.match_info["event_id"]
        try:
            store.delete_event(event_id)
        except EventNotFoundError:
            return _not_found()
        except OSError:
            logger.exception("Failed to persist deletion of event %s", event_id)
            return web.json_response({"error": "failed to delete event"}, status=500)
        return web.json_response({"ok": True})

    async def list_exceptions(request: web.Request) -> web.Response:
        try:
            items = store.list_exceptions(request.match_info["event_id"])
        except EventNotFoundError:
            return _not_found()
        return web.json_response(
            {"exceptions": [exc.model_dump(mode="json", by_alias=True) for exc in items]}
        )

    async def set_exception(request: web.Request) -> web.Response:
        """Cancel (``skipped: true``) or restore one occurrence of a series."""
        event_id = request.match_info["event_id"]
        payload = await read_payload(request, ExceptionCreate)
        if isinstance(payload, web.Response):
            return payload
        try:
            exception = store.set_exception(event_id, payload.occurrence, payload.skipped)
        except EventNotFoundError:
            return _not_found()
        except OSError:
            logger.exception("Failed to persist exception for event %s", event_id)
            return web.json_response({"error": "failed to store exception"}, status=500)
        return web.json_response(
            {"ok": True, "exception": exception.model_dump(mode="json", by_alias=True)}
        )

    async def clear_exception(request: web.Request) -> web.Response:
        event_id = request.match_info["event_id"]
        raw = request.query.get("occurrence")
        if not raw:
            return web.json_response({"error": "missing occurrence"}, status=400)
        try:
            occurrence = parse_iso_instant(raw)
        except ValueError:
            return web.json_response({"error": "Invalid occurrence date"}, status=400)
        try:
            removed = store.clear_exception(event_id, occurrence)
        except EventNotFoundError:
            return _not_found()
        except OSError:
            logger.exception("Failed to persist exception removal for event %s", event_id)
            return web.json_response({"error": "failed to clear exception"}, status=500)
        return web.json_response({"ok": True, "removed": removed})

    async def list_reminders(request: web.Request) -> web.Response:
        """Upcoming reminder firings for occurrences in the requested window."""
        try:
            result = await expand_window(request)
        except ValueError:
            return web.json_response({"error": "Invalid start or end date"}, status=400)
        except InvalidWindowError as exc:
            return web.json_response({"error": str(exc)}, status=400)

        schedule = build_reminder_schedule(result.instances, now=time_provider())
        return web.json_response({"reminders": [item.to_api_dict() for item in schedule]})

    app.router.add_get("/health", health_check)
    app.router.add_get("/events", list_events)
    app.router.add_post("/events", create_event)
    app.router.add_get("/events/{event_id}", get_event)
    app.router.add_patch("/events/{event_id}", update_event)
    app.router.add_delete("/events/{event_id}", delete_event)
    app.router.add_get("/events/{event_id}/exceptions", list_exceptions)
    app.router.add_post("/events/{event_id}/exceptions", set_exception)
    app.router.add_delete("/events/{event_id}/exceptions", clear_exception)
    app.router.add_get("/reminders", list_reminders)

    logger.debug("Event routes registered")
