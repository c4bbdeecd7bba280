"""Middleware components for request processing.

Provides request correlation ID tracking so log lines from one request can be
grouped together.
"""

from .correlation_id import correlation_id_middleware, get_request_id

__all__ = ["correlation_id_middleware", "get_request_id"]
