"""CRUD routes for the event collection service."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from aiohttp import web

from .mem_storage import MemStorage

logger = logging.getLogger(__name__)

NOT_FOUND = {"message": "Not found"}


async def _read_object(request: web.Request) -> dict[str, Any] | None:
    """Parse the request body as a JSON object, or None if it is not one."""
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def register_event_routes(
    app: web.Application,
    storage: MemStorage,
    time_provider: Callable[[], datetime],
) -> None:
    """Register the event and project routes.

    Args:
        app: aiohttp web application
        storage: Record collection backing the routes
        time_provider: Time provider callable for the health endpoint
    """

    async def health_check(_request: web.Request) -> web.Response:
        """Liveness probe."""
        return web.json_response(
            {"status": "ok", "timestamp": time_provider().isoformat()}, status=200
        )

    async def list_events(_request: web.Request) -> web.Response:
        events = await storage.get_events()
        return web.json_response(events, status=200)

    async def get_event(request: web.Request) -> web.Response:
        record = await storage.get_event(request.match_info["event_id"])
        if record is None:
            return web.json_response(NOT_FOUND, status=404)
        return web.json_response(record, status=200)

    async def create_event(request: web.Request) -> web.Response:
        data = await _read_object(request)
        if data is None:
            return web.json_response({"message": "Invalid JSON body"}, status=400)
        record = await storage.create_event(data)
        logger.info("Created event %s", record["id"])
        return web.json_response(record, status=201)

    async def update_event(request: web.Request) -> web.Response:
        data = await _read_object(request)
        if data is None:
            return web.json_response({"message": "Invalid JSON body"}, status=400)
        event_id = request.match_info["event_id"]
        record = await storage.update_event(event_id, data)
        if record is None:
            return web.json_response(NOT_FOUND, status=404)
        logger.debug("Updated event %s", event_id)
        return web.json_response(record, status=200)

    async def delete_event(request: web.Request) -> web.Response:
        event_id = request.match_info["event_id"]
        if not await storage.delete_event(event_id):
            return web.json_response(NOT_FOUND, status=404)
        logger.info("Deleted event %s", event_id)
        return web.Response(status=204)

    async def list_projects(_request: web.Request) -> web.Response:
        projects = await storage.get_projects()
        return web.json_response(projects, status=200)

    app.router.add_get("/api/health", health_check)
    app.router.add_get("/api/events", list_events)
    app.router.add_post("/api/events", create_event)
    app.router.add_get("/api/events/{event_id}", get_event)
    app.router.add_put("/api/events/{event_id}", update_event)
    app.router.add_delete("/api/events/{event_id}", delete_event)
    app.router.add_get("/api/projects", list_projects)
