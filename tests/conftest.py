"""Shared fixtures for taskcal tests."""

import itertools
from collections.abc import AsyncIterator, Callable, Generator
from datetime import datetime
from typing import Any, Optional

import pytest

from taskcal.calendar.instance_generator import ExpansionCache, InstanceGenerator
from taskcal.calendar.recurrence import RuleCache
from taskcal.core.http_client import close_all_clients
from taskcal.core.time_utils import TEST_TIME_ENV
from taskcal.domain.event_service import EventService
from taskcal.storage.backends import MemoryBackend
from taskcal.storage.raw_store import RawEventStore

# Monday, mid-morning; the expansion window around it covers all of Q1 2024
FIXED_NOW = datetime(2024, 1, 15, 12, 0)


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests spanning several components")
    config.addinivalue_line("markers", "fast: Tests that complete in well under a second")


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear taskcal environment overrides before and after each test."""
    for name in (TEST_TIME_ENV, "TASKCAL_DEBUG", "TASKCAL_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    for name in (TEST_TIME_ENV, "TASKCAL_DEBUG", "TASKCAL_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients after every test."""
    yield
    await close_all_clients()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def sequential_ids() -> Callable[[], str]:
    """Deterministic id factory: evt-1, evt-2, ..."""
    counter = itertools.count(1)
    return lambda: f"evt-{next(counter)}"


@pytest.fixture
def make_service(sequential_ids: Callable[[], str]) -> Callable[..., EventService]:
    """Factory building an EventService over a fresh in-memory backend.

    The backend starts with an empty (but initialized) collection so reads do
    not fall back to seed events. Writes are not debounced.
    """

    def _make(
        records: Optional[list[dict[str, Any]]] = None,
        now: datetime = FIXED_NOW,
        debounce_ms: int = 0,
        max_instances_per_parent: int = 500,
    ) -> EventService:
        expansion_cache = ExpansionCache()
        store = RawEventStore(
            MemoryBackend(records if records is not None else []),
            expansion_cache=expansion_cache,
            debounce_ms=debounce_ms,
        )
        generator = InstanceGenerator(
            rule_cache=RuleCache(),
            expansion_cache=expansion_cache,
            max_instances_per_parent=max_instances_per_parent,
            clock=lambda: now,
        )
        return EventService(store, generator=generator, clock=lambda: now, id_factory=sequential_ids)

    return _make
