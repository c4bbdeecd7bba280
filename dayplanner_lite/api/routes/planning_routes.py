"""Task and reflection routes for dayplanner_lite."""

from __future__ import annotations

import logging

from aiohttp import web
from pydantic import ValidationError

from ...calendar.errors import EventNotFoundError, TaskNotFoundError
from ...domain.event_store import EventStore
from ...domain.planning import ReflectionCreate, Task, TaskCreate, TaskSchedule, TaskUpdate
from .payloads import read_payload, validation_response

logger = logging.getLogger(__name__)


def register_planning_routes(app: web.Application, store: EventStore) -> None:
    """Register task CRUD, task scheduling and event reflection routes.

    Args:
        app: aiohttp web application
        store: Planner store shared with the event routes
    """

    def task_payload(task: Task) -> dict:
        payload = task.to_api_dict()
        payload["eventIds"] = [event.id for event in store.list_events_for_task(task.id)]
        return payload

    async def list_tasks(request: web.Request) -> web.Response:
        """Tasks filtered by optional ``status`` and ``priority`` query params."""
        status = request.query.get("status") or None
        raw_priority = request.query.get("priority")
        try:
            priority = int(raw_priority) if raw_priority else None
            tasks = store.list_tasks(status=status, priority=priority)
        except ValueError:
            return web.json_response({"error": "Invalid status or priority"}, status=400)
        return web.json_response({"tasks": [task_payload(task) for task in tasks]})

    async def create_task(request: web.Request) -> web.Response:
        payload = await read_payload(request, TaskCreate)
        if isinstance(payload, web.Response):
            return payload
        try:
            task = store.add_task(payload)
        except TaskNotFoundError as exc:
            return web.json_response({"error": str(exc)}, status=400)
        except OSError:
            logger.exception("Failed to persist new task")
            return web.json_response({"error": "failed to store task"}, status=500)
        return web.json_response({"ok": True, "task": task_payload(task)})

    async def get_task(request: web.Request) -> web.Response:
        try:
            task = store.get_task(request.match_info["task_id"])
        except TaskNotFoundError:
            return web.json_response({"error": "Task not found"}, status=404)
        return web.json_response({"task": task_payload(task)})

    async def update_task(request: web.Request) -> web.Response:
        task_id = request.match_info["task_id"]
        payload = await read_payload(request, TaskUpdate)
        if isinstance(payload, web.Response):
            return payload
        try:
            store.get_task(task_id)
        except TaskNotFoundError:
            return web.json_response({"error": "Task not found"}, status=404)
        try:
            task = store.update_task(task_id, payload)
        except TaskNotFoundError as exc:
            # The task itself exists, so this is the new parent
            return web.json_response({"error": str(exc)}, status=400)
        except ValidationError as exc:
            return validation_response(exc)
        except ValueError as exc:
            return web.json_response({"error": str(exc)}, status=400)
        except OSError:
            logger.exception("Failed to persist update of task %s", task_id)
            return web.json_response({"error": "failed to store task"}, status=500)
        return web.json_response({"ok": True, "task": task_payload(task)})

    async def delete_task(request: web.Request) -> web.Response:
        task_id = request.match_info["task_id"]
        try:
            store.delete_task(task_id)
        except TaskNotFoundError:
            return web.json_response({"error": "Task not found"}, status=404)
        except OSError:
            logger.exception("Failed to persist deletion of task %s", task_id)
            return web.json_response({"error": "failed to delete task"}, status=500)
        return web.json_response({"ok": True})

    async def schedule_task(request: web.Request) -> web.Response:
        """Create a one-off event for the task and mark it scheduled."""
        task_id = request.match_info["task_id"]
        payload = await read_payload(request, TaskSchedule)
        if isinstance(payload, web.Response):
            return payload
        try:
            event, task = store.schedule_task(task_id, payload)
        except TaskNotFoundError:
            return web.json_response({"error": "Task not found"}, status=404)
        except OSError:
            logger.exception("Failed to persist schedule of task %s", task_id)
            return web.json_response({"error": "failed to schedule task"}, status=500)
        return web.json_response(
            {
                "ok": True,
                "event": event.to_api_dict(),
                "task": task_payload(task),
                "message": f'Task "{task.title}" scheduled for {payload.duration} minutes',
            }
        )

    async def save_reflection(request: web.Request) -> web.Response:
        """Create or replace the reflection of an event."""
        event_id = request.match_info["event_id"]
        payload = await read_payload(request, ReflectionCreate)
        if isinstance(payload, web.Response):
            return payload
        try:
            reflection = store.set_reflection(event_id, payload)
        except EventNotFoundError:
            return web.json_response({"error": "Event not found"}, status=404)
        except OSError:
            logger.exception("Failed to persist reflection for event %s", event_id)
            return web.json_response({"error": "failed to store reflection"}, status=500)
        return web.json_response({"ok": True, "reflection": reflection.to_api_dict()})

    async def get_reflection(request: web.Request) -> web.Response:
        try:
            reflection = store.get_reflection(request.match_info["event_id"])
        except EventNotFoundError:
            return web.json_response({"error": "Event not found"}, status=404)
        if reflection is None:
            return web.json_response({"error": "No reflection recorded"}, status=404)
        return web.json_response({"reflection": reflection.to_api_dict()})

    app.router.add_get("/tasks", list_tasks)
    app.router.add_post("/tasks", create_task)
    app.router.add_get("/tasks/{task_id}", get_task)
    app.router.add_patch("/tasks/{task_id}", update_task)
    app.router.add_delete("/tasks/{task_id}", delete_task)
    app.router.add_post("/tasks/{task_id}/schedule", schedule_task)
    app.router.add_get("/events/{event_id}/reflection", get_reflection)
    app.router.add_post("/events/{event_id}/reflection", save_reflection)

    logger.debug("Planning routes registered")
