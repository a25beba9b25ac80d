"""Persistence backends for the raw event collection.

A backend stores the raw records as JSON-ready dicts. It knows nothing about
recurrence; the raw store sanitizes records before they reach it.

``read_all`` returns None when nothing has ever been persisted, which lets the
raw store tell a fresh installation apart from a deliberately empty calendar.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx

from ..core.http_client import get_default_headers, get_shared_client
from ..exceptions import StorageIOError

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class StorageBackend(Protocol):
    """Read/write contract over the persisted record collection."""

    async def read_all(self) -> Optional[list[Record]]:
        """Return all stored records, or None if the store was never written.

        Raises:
            StorageIOError: If the store cannot be read
        """
        ...

    async def write_all(self, records: list[Record]) -> None:
        """Replace the stored collection with ``records``.

        Raises:
            StorageIOError: If the store cannot be written
        """
        ...


class MemoryBackend:
    """In-process backend holding records in a list."""

    def __init__(self, records: Optional[list[Record]] = None) -> None:
        self._records: Optional[list[Record]] = copy.deepcopy(records) if records is not None else None
        self.write_count = 0

    async def read_all(self) -> Optional[list[Record]]:
        if self._records is None:
            return None
        return copy.deepcopy(self._records)

    async def write_all(self, records: list[Record]) -> None:
        self._records = copy.deepcopy(records)
        self.write_count += 1


class JsonFileBackend:
    """JSON array on disk with atomic writes.

    Writes go to a temporary file in the same directory which is then
    ``os.replace``d over the target, so readers never see a partial file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def read_all(self) -> Optional[list[Record]]:
        return await asyncio.to_thread(self._read)

    async def write_all(self, records: list[Record]) -> None:
        await asyncio.to_thread(self._write, records)

    def _read(self) -> Optional[list[Record]]:
        if not self._path.exists():
            logger.debug("Event store file not found: %s", self._path)
            return None

        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageIOError(f"Failed to read event store {self._path}: {e}") from e

        if not isinstance(data, list):
            raise StorageIOError(f"Event store {self._path} root must be a JSON array")

        logger.debug("Loaded %d records from %s", len(data), self._path)
        return data

    def _write(self, records: list[Record]) -> None:
        tmp_path: Optional[Path] = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8", suffix=".tmp"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(records, tf, ensure_ascii=False)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())

            tmp_path.replace(self._path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise StorageIOError(f"Failed to write event store {self._path}: {e}") from e

        logger.debug("Persisted %d records to %s", len(records), self._path)


class RemoteApiBackend:
    """Backend talking to the CRUD HTTP service.

    ``write_all`` reconciles the remote collection with the given records:
    unknown ids are created, known ids updated and remote ids missing from the
    new set deleted.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        client_id: str = "remote-api",
    ) -> None:
        """Create a remote backend.

        Args:
            base_url: API root, e.g. "http://localhost:8080/api"
            client: Explicit client; defaults to the shared pooled client
            client_id: Shared client identifier when no client is given
        """
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._client_id = client_id

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_shared_client(self._client_id)

    def _url(self, *parts: str) -> str:
        return "/".join([self._base_url, "events", *parts])

    async def read_all(self) -> Optional[list[Record]]:
        client = await self._get_client()
        try:
            response = await client.get(self._url(), headers=get_default_headers())
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StorageIOError(f"Failed to fetch events from {self._base_url}: {e}") from e

        if not isinstance(data, list):
            raise StorageIOError(f"Unexpected events payload from {self._base_url}")
        return data

    async def write_all(self, records: list[Record]) -> None:
        remote = await self.read_all() or []
        remote_ids = {str(r.get("id")) for r in remote if isinstance(r, dict)}
        local_ids = {str(r["id"]) for r in records}

        client = await self._get_client()
        headers = get_default_headers()
        created = updated = deleted = 0
        try:
            for record in records:
                record_id = str(record["id"])
                if record_id in remote_ids:
                    response = await client.put(self._url(record_id), json=record, headers=headers)
                    updated += 1
                else:
                    response = await client.post(self._url(), json=record, headers=headers)
                    created += 1
                response.raise_for_status()

            for stale_id in remote_ids - local_ids:
                response = await client.delete(self._url(stale_id), headers=headers)
                if response.status_code != 404:
                    response.raise_for_status()
                deleted += 1
        except httpx.HTTPError as e:
            raise StorageIOError(f"Failed to write events to {self._base_url}: {e}") from e

        logger.debug(
            "Remote sync complete: created=%d updated=%d deleted=%d", created, updated, deleted
        )


def backend_from_settings(settings: Any) -> StorageBackend:
    """Pick the backend described by engine settings.

    Remote API when enabled and a URL is configured, else a JSON file when a
    store path is set, else memory.
    """
    if getattr(settings, "use_remote_api", False) and getattr(settings, "remote_api_url", None):
        logger.info("Using remote event store at %s", settings.remote_api_url)
        return RemoteApiBackend(settings.remote_api_url)

    store_path = getattr(settings, "store_path", None)
    if store_path:
        logger.info("Using JSON event store at %s", store_path)
        return JsonFileBackend(store_path)

    logger.info("No event store configured, using in-memory store")
    return MemoryBackend()
