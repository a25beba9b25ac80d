"""Raw event store: the persisted collection of parents, events and exceptions.

Reads return sanitized ``Event`` records. Writes are sanitized, held as pending
state and flushed to the backend after a short debounce so bursts of edits
produce one backend write.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Optional, Union

from ..calendar.instance_generator import ExpansionCache
from ..calendar.models import Event
from ..calendar.sanitizer import sanitize_event
from ..core.settings import DEFAULT_WRITE_DEBOUNCE_MS
from ..exceptions import CorruptDataError, StorageIOError, ValidationError
from .backends import StorageBackend

logger = logging.getLogger(__name__)

# Shown when nothing has been stored yet or the store cannot be read
DEFAULT_SEED_EVENTS: tuple[dict[str, Any], ...] = (
    {
        "id": "1",
        "title": "Team Standup",
        "startTime": datetime(2024, 11, 15, 9, 0),
        "endTime": datetime(2024, 11, 15, 9, 30),
        "category": "Meeting",
        "color": "#3b82f6",
        "description": "Daily sync with the team",
        "isCompleted": False,
    },
    {
        "id": "2",
        "title": "Client Presentation",
        "startTime": datetime(2024, 11, 15, 14, 0),
        "endTime": datetime(2024, 11, 15, 15, 30),
        "category": "Booking",
        "color": "#10b981",
        "description": "Q4 results presentation",
        "isCompleted": False,
    },
    {
        "id": "3",
        "title": "Project Deadline",
        "startTime": datetime(2024, 11, 18, 17, 0),
        "endTime": datetime(2024, 11, 18, 17, 0),
        "category": "Deadline",
        "color": "#ef4444",
        "description": "Submit final deliverables",
        "isCompleted": False,
    },
    {
        "id": "4",
        "title": "Deep Work",
        "startTime": datetime(2024, 11, 16, 10, 0),
        "endTime": datetime(2024, 11, 16, 12, 0),
        "category": "Focus Time",
        "color": "#8b5cf6",
        "description": "Focus time for development",
        "isCompleted": False,
    },
    {
        "id": "5",
        "title": "Code Review Session",
        "startTime": datetime(2024, 11, 19, 15, 0),
        "endTime": datetime(2024, 11, 19, 16, 0),
        "category": "Meeting",
        "color": "#3b82f6",
        "isCompleted": False,
    },
)


def default_seed_events() -> list[Event]:
    """Fresh Event copies of the seed records."""
    return [sanitize_event(record) for record in DEFAULT_SEED_EVENTS]


class RawEventStore:
    """Accessor over the persisted raw records.

    Generated instances are never stored: records with a ``parent_id`` that are
    not exceptions are dropped on both read and write.
    """

    def __init__(
        self,
        backend: StorageBackend,
        expansion_cache: Optional[ExpansionCache] = None,
        debounce_ms: int = DEFAULT_WRITE_DEBOUNCE_MS,
    ):
        """Initialize the store.

        Args:
            backend: Persistence backend
            expansion_cache: Cache invalidated on every write
            debounce_ms: Delay before pending writes are flushed; 0 writes immediately
        """
        self.backend = backend
        self.expansion_cache = expansion_cache if expansion_cache is not None else ExpansionCache()
        self.debounce_ms = max(int(debounce_ms), 0)

        self._pending: Optional[list[Event]] = None
        self._flush_task: Optional[asyncio.Task[None]] = None
        self._write_lock = asyncio.Lock()

    @property
    def has_pending_write(self) -> bool:
        """True while a write is waiting to reach the backend."""
        return self._pending is not None

    async def read_raw(self) -> list[Event]:
        """Return the stored parents, standalone events and exceptions.

        Returns:
            Sanitized records; seed events if the store is empty or unreadable
        """
        if self._pending is not None:
            return list(self._pending)

        try:
            records = await self.backend.read_all()
        except StorageIOError as e:
            logger.error("Failed to read event store, using default events: %s", e)
            return default_seed_events()

        if records is None:
            logger.info("Event store not initialized, using default events")
            return default_seed_events()

        events: list[Event] = []
        for index, record in enumerate(records):
            event = self._load_record(index, record)
            if event is None:
                continue
            if event.is_generated_instance:
                logger.debug("Dropping stored generated instance %s", event.id)
                continue
            events.append(event)

        logger.debug("Read %d raw records (%d stored)", len(events), len(records))
        return events

    @staticmethod
    def _load_record(index: int, record: Any) -> Optional[Event]:
        if not isinstance(record, Mapping):
            err = CorruptDataError(f"Record #{index} is not an object")
            logger.warning("Skipping stored record: %s", err)
            return None
        try:
            return sanitize_event(record)
        except ValidationError as e:
            err = CorruptDataError(f"Record #{index} ({record.get('id')!r}) is malformed: {e}")
            logger.warning("Skipping stored record: %s", err)
            return None

    async def write_raw(self, events: Iterable[Union[Event, Mapping[str, Any]]]) -> list[Event]:
        """Replace the stored collection.

        Records are sanitized; records that cannot be persisted are logged and
        dropped. The expansion cache is invalidated immediately and the backend
        write is debounced.

        Args:
            events: Full new raw record set

        Returns:
            The sanitized records that will be persisted
        """
        by_id: dict[str, Event] = {}
        for candidate in events:
            try:
                event = sanitize_event(candidate)
            except ValidationError as e:
                logger.warning("Dropping unpersistable record: %s", e)
                continue
            if event.is_generated_instance:
                logger.debug("Not persisting generated instance %s", event.id)
                continue
            by_id[event.id] = event

        sanitized = list(by_id.values())
        self._pending = sanitized
        self.expansion_cache.invalidate()

        if self.debounce_ms == 0:
            await self.flush()
        else:
            self._schedule_flush()

        return list(sanitized)

    def _schedule_flush(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = asyncio.get_running_loop().create_task(self._delayed_flush())

    async def _delayed_flush(self) -> None:
        await asyncio.sleep(self.debounce_ms / 1000)
        # A later write may cancel the timer; the write itself must not be interrupted
        await asyncio.shield(self.flush())

    async def flush(self) -> bool:
        """Persist pending state now.

        Returns:
            True if nothing is pending afterwards, False if the backend write failed
        """
        async with self._write_lock:
            pending = self._pending
            if pending is None:
                return True

            records = [event.to_record() for event in pending]
            try:
                await self.backend.write_all(records)
            except StorageIOError as e:
                logger.error(
                    "Failed to persist %d records, keeping them pending: %s", len(records), e
                )
                return False

            if self._pending is pending:
                self._pending = None
            logger.debug("Flushed %d records to backend", len(records))
            return True

    async def close(self) -> None:
        """Cancel the debounce timer and flush pending state."""
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task
        self._flush_task = None
        await self.flush()
