"""Request correlation ID middleware.

Every request gets an id, taken from the client's ``X-Request-ID`` or
``X-Correlation-ID`` header or generated. The id is stored in a context
variable so log records and outgoing HTTP calls made while handling the
request carry it, and it is echoed back in the ``X-Request-ID`` response
header.
"""

import uuid
from collections.abc import Awaitable, Callable
from contextvars import ContextVar

from aiohttp import web

# Context variable for storing request correlation ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

NO_REQUEST_ID = "no-request-id"


@web.middleware
async def correlation_id_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    """Extract or generate the correlation ID for a request.

    Priority:
    1. X-Request-ID from client
    2. X-Correlation-ID from client
    3. New UUID

    Args:
        request: aiohttp request object
        handler: Next handler in middleware chain

    Returns:
        Response with the correlation ID added to its headers
    """
    correlation_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid.uuid4())
    )

    token = request_id_var.set(correlation_id)
    request["correlation_id"] = correlation_id
    try:
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            exc.headers["X-Request-ID"] = correlation_id
            raise
        response.headers["X-Request-ID"] = correlation_id
        return response
    finally:
        request_id_var.reset(token)


def get_request_id() -> str:
    """Get the current request correlation ID from context.

    Returns:
        Current request correlation ID, or "no-request-id" if not set
    """
    request_id = request_id_var.get()
    return request_id if request_id else NO_REQUEST_ID
