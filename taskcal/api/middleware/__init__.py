"""Middleware components for request processing.

This module provides middleware for cross-cutting concerns like request
correlation ID tracking.
"""

from .correlation_id import NO_REQUEST_ID, correlation_id_middleware, get_request_id, request_id_var

__all__ = ["NO_REQUEST_ID", "correlation_id_middleware", "get_request_id", "request_id_var"]
