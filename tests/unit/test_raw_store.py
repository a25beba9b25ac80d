"""Unit tests for taskcal.storage.raw_store."""

import asyncio
from datetime import datetime

import pytest

from taskcal.calendar.instance_generator import ExpansionCache
from taskcal.calendar.models import Event
from taskcal.exceptions import StorageIOError
from taskcal.storage.backends import MemoryBackend
from taskcal.storage.raw_store import DEFAULT_SEED_EVENTS, RawEventStore

pytestmark = [pytest.mark.unit]


class FailingBackend:
    """Backend whose reads and/or writes raise StorageIOError."""

    def __init__(self, fail_reads: bool = True, fail_writes: bool = True):
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.write_attempts = 0

    async def read_all(self):
        if self.fail_reads:
            raise StorageIOError("disk on fire")
        return []

    async def write_all(self, records):
        self.write_attempts += 1
        if self.fail_writes:
            raise StorageIOError("disk full")


def _record(event_id: str, **extra):
    data = {"id": event_id, "title": f"Event {event_id}", "startTime": "2024-01-01T09:00:00"}
    data.update(extra)
    return data


class TestReadRaw:
    async def test_uninitialized_store_returns_seed_events(self):
        store = RawEventStore(MemoryBackend(), debounce_ms=0)

        events = await store.read_raw()

        assert [e.id for e in events] == ["1", "2", "3", "4", "5"]
        assert events[0].title == "Team Standup"
        assert events[0].start_time == datetime(2024, 11, 15, 9, 0)
        assert events[0].end_time == datetime(2024, 11, 15, 9, 30)
        assert len(DEFAULT_SEED_EVENTS) == 5

    async def test_unreadable_store_returns_seed_events(self, caplog):
        store = RawEventStore(FailingBackend(), debounce_ms=0)

        events = await store.read_raw()

        assert len(events) == 5
        assert "disk on fire" in caplog.text

    async def test_empty_store_stays_empty(self):
        store = RawEventStore(MemoryBackend([]), debounce_ms=0)

        assert await store.read_raw() == []

    async def test_malformed_records_skipped(self, caplog):
        backend = MemoryBackend([_record("ok"), {"id": "no-start"}, "junk", _record("ok2")])
        store = RawEventStore(backend, debounce_ms=0)

        events = await store.read_raw()

        assert [e.id for e in events] == ["ok", "ok2"]
        assert "no-start" in caplog.text

    async def test_generated_instances_never_returned(self):
        backend = MemoryBackend(
            [
                _record("p", isRecurring=True, recurrenceRule="FREQ=DAILY"),
                _record("p-1704099600000", parentId="p"),
                _record("x", parentId="p", isException=True, isSkipped=True),
            ]
        )
        store = RawEventStore(backend, debounce_ms=0)

        assert [e.id for e in await store.read_raw()] == ["p", "x"]


class TestWriteRaw:
    async def test_immediate_write_without_debounce(self):
        backend = MemoryBackend([])
        store = RawEventStore(backend, debounce_ms=0)

        await store.write_raw([_record("a")])

        assert backend.write_count == 1
        assert (await backend.read_all())[0]["id"] == "a"
        assert not store.has_pending_write

    async def test_write_sanitizes_and_drops_unpersistable(self):
        backend = MemoryBackend([])
        store = RawEventStore(backend, debounce_ms=0)

        written = await store.write_raw(
            [
                _record("a", title="   ", endTime="2023-01-01T00:00:00"),
                {"title": "no id"},
                _record("p-1", parentId="p"),
            ]
        )

        assert [e.id for e in written] == ["a"]
        stored = await backend.read_all()
        assert stored[0]["title"] == "Untitled"
        assert stored[0]["endTime"] == stored[0]["startTime"]

    async def test_pending_write_visible_before_flush(self):
        backend = MemoryBackend([])
        store = RawEventStore(backend, debounce_ms=1000)

        await store.write_raw([_record("a")])

        assert backend.write_count == 0
        assert [e.id for e in await store.read_raw()] == ["a"]
        await store.close()
        assert backend.write_count == 1

    async def test_debounce_coalesces_bursts(self):
        backend = MemoryBackend([])
        store = RawEventStore(backend, debounce_ms=20)

        await store.write_raw([_record("a")])
        await store.write_raw([_record("a"), _record("b")])
        await store.write_raw([_record("c")])
        await asyncio.sleep(0.15)

        assert backend.write_count == 1
        assert [r["id"] for r in await backend.read_all()] == ["c"]
        assert not store.has_pending_write

    async def test_write_invalidates_expansion_cache(self):
        cache = ExpansionCache()
        cache.put("key", [Event(id="x", start_time=datetime(2024, 1, 1))])
        store = RawEventStore(MemoryBackend([]), expansion_cache=cache, debounce_ms=0)

        await store.write_raw([_record("a")])

        assert cache.is_empty

    async def test_failed_write_keeps_pending_state(self, caplog):
        backend = FailingBackend(fail_reads=False)
        store = RawEventStore(backend, debounce_ms=0)

        await store.write_raw([_record("a")])

        assert store.has_pending_write
        assert [e.id for e in await store.read_raw()] == ["a"]
        assert "disk full" in caplog.text

        backend.fail_writes = False
        assert await store.flush() is True
        assert backend.write_attempts == 2
        assert not store.has_pending_write

    async def test_flush_without_pending_is_noop(self):
        backend = MemoryBackend([])
        store = RawEventStore(backend, debounce_ms=0)

        assert await store.flush() is True
        assert backend.write_count == 0
