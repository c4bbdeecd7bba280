"""Route modules for dayplanner_lite server."""

from .event_routes import register_event_routes
from .planning_routes import register_planning_routes

__all__ = [
    "register_event_routes",
    "register_planning_routes",
]
