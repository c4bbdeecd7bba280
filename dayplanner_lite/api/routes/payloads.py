"""Request body parsing shared by the route modules."""

from __future__ import annotations

import json
from typing import Any

from aiohttp import web
from pydantic import BaseModel, ValidationError


def validation_response(exc: ValidationError) -> web.Response:
    # exc.json() renders ctx values (e.g. wrapped ValueErrors) as strings
    details = json.loads(exc.json(include_url=False))
    return web.json_response({"error": "Validation error", "details": details}, status=400)


async def read_payload(request: web.Request, model: type[BaseModel]) -> Any:
    """Parse the JSON body into ``model``; returns a 400 response on failure."""
    try:
        data = await request.json()
    except ValueError:
        return web.json_response({"error": "invalid json"}, status=400)
    if not isinstance(data, dict):
        return web.json_response({"error": "request body must be a JSON object"}, status=400)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        return validation_response(exc)
