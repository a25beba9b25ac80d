"""Shared HTTP client manager for the remote CRUD backend.

Keeps one pooled httpx.AsyncClient per client id so repeated store reads and
writes reuse connections instead of opening a new client per request.
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# Global state for shared HTTP clients
_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_lock = asyncio.Lock()

_DEFAULT_LIMITS = httpx.Limits(
    max_connections=8,
    max_keepalive_connections=4,
)

_DEFAULT_TIMEOUT = httpx.Timeout(
    connect=5.0,
    read=15.0,
    write=10.0,
    pool=15.0,
)

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": "taskcal/0.1",
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def get_default_headers() -> dict[str, str]:
    """Default headers plus the current request's correlation id, if any.

    Returns:
        Headers dictionary
    """
    headers = DEFAULT_HEADERS.copy()

    try:
        from taskcal.api.middleware import NO_REQUEST_ID, get_request_id

        request_id = get_request_id()
        if request_id and request_id != NO_REQUEST_ID:
            headers["X-Request-ID"] = request_id
    except ImportError:
        pass

    return headers


async def get_shared_client(
    client_id: str = "default",
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client (allows multiple clients if needed)
        limits: Custom connection limits
        timeout: Custom timeout configuration

    Returns:
        Shared httpx.AsyncClient
    """
    async with _client_lock:
        client = _shared_clients.get(client_id)
        if client is None or client.is_closed:
            effective_limits = limits or _DEFAULT_LIMITS
            logger.debug(
                "Creating shared HTTP client '%s' with limits: max_connections=%d, max_keepalive=%d",
                client_id,
                effective_limits.max_connections,
                effective_limits.max_keepalive_connections,
            )
            client = httpx.AsyncClient(
                limits=effective_limits,
                timeout=timeout or _DEFAULT_TIMEOUT,
                follow_redirects=True,
                headers=get_default_headers(),
            )
            _shared_clients[client_id] = client
            logger.info("Created shared HTTP client '%s'", client_id)

        return client


async def close_all_clients() -> None:
    """Close all shared HTTP clients.

    Called during application shutdown and between tests.
    """
    async with _client_lock:
        for client_id, client in _shared_clients.items():
            try:
                if not client.is_closed:
                    await client.aclose()
                    logger.debug("Closed shared HTTP client '%s'", client_id)
            except (httpx.HTTPError, RuntimeError) as e:
                logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)

        if _shared_clients:
            logger.info("All shared HTTP clients closed")
        _shared_clients.clear()
