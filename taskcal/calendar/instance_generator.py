"""Expansion of recurring parents into concrete event occurrences.

The generator combines raw records (parents, standalone events, exceptions) into
the materialized list shown to consumers:

1. Standalone events and exceptions pass through; parents and skipped records do not.
2. Each parent's rule is enumerated over a window around "now". Occurrences covered
   by an exception are left to the exception (or suppressed if it is skipped); the
   rest become generated instances with id ``"{parentId}-{epochMillis}"``.
3. Generation per parent stops at ``max_instances_per_parent`` instances or when
   ``time_budget_ms`` is spent, whichever comes first.

The whole expansion is cached by a fingerprint of the raw records and window.
"""

# ruff: noqa: I001
from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
import hashlib
import json
import logging
import time
from typing import Optional

from ..core.settings import (
    DEFAULT_EXPANSION_TIME_BUDGET_MS,
    DEFAULT_MAX_INSTANCES_PER_PARENT,
    DEFAULT_RECURRENCE_WINDOW_DAYS,
)
from ..core.time_utils import epoch_millis, floor_to_minute, now_local, to_wall_clock
from ..exceptions import CorruptDataError, RecurrenceParseError
from .models import Event
from .recurrence import RuleCache

logger = logging.getLogger(__name__)

DEFAULT_HALF_WINDOW_DAYS = DEFAULT_RECURRENCE_WINDOW_DAYS // 2

OccurrenceKey = tuple[Optional[str], int]


@dataclass(frozen=True)
class ExpansionWindow:
    """Inclusive time range over which instances are generated."""

    start: datetime
    end: datetime

    @classmethod
    def around(cls, now: datetime, half_window_days: int) -> "ExpansionWindow":
        """Symmetric window around ``now`` (truncated to the minute)."""
        center = floor_to_minute(to_wall_clock(now))
        half = timedelta(days=half_window_days)
        return cls(start=center - half, end=center + half)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def fingerprint(raw: Sequence[Event], window: ExpansionWindow) -> str:
    """Content hash of a raw record set and window, used as the cache key."""
    payload = json.dumps(
        {
            "window": [window.start.isoformat(), window.end.isoformat()],
            "records": [event.to_record() for event in raw],
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ExpansionCache:
    """Single-entry cache of the last expansion result.

    Owned by the service and shared with the raw store, which invalidates it on
    every write.
    """

    def __init__(self) -> None:
        self._key: Optional[str] = None
        self._events: Optional[list[Event]] = None
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[list[Event]]:
        """Return copies of the cached events if ``key`` matches, else None."""
        if self._events is not None and self._key == key:
            self.hits += 1
            return [event.model_copy(deep=True) for event in self._events]
        self.misses += 1
        return None

    def put(self, key: str, events: list[Event]) -> None:
        """Replace the cached entry with copies of ``events``."""
        self._key = key
        self._events = [event.model_copy(deep=True) for event in events]

    def invalidate(self) -> None:
        """Drop the cached entry."""
        if self._events is not None:
            logger.debug("Expansion cache invalidated")
        self._key = None
        self._events = None

    @property
    def is_empty(self) -> bool:
        return self._events is None


def synthesize_instance(parent: Event, occurrence: datetime) -> Event:
    """Build the generated instance of ``parent`` starting at ``occurrence``."""
    duration = parent.duration
    return parent.model_copy(
        update={
            "id": f"{parent.id}-{epoch_millis(occurrence)}",
            "start_time": occurrence,
            "end_time": occurrence + duration if duration is not None else None,
            "parent_id": parent.id,
            "is_recurring": False,
            "is_exception": False,
        },
        deep=True,
    )


def exception_index(raw: Iterable[Event]) -> dict[OccurrenceKey, Event]:
    """Map (parent_id, start millis) to the exception record covering that slot."""
    return {
        event.occurrence_key: event
        for event in raw
        if event.parent_id and event.is_exception
    }


class InstanceGenerator:
    """Materializes display events from raw records.

    Holds references to the rule cache and expansion cache it is given so callers
    (and tests) control their lifetime.
    """

    def __init__(
        self,
        rule_cache: Optional[RuleCache] = None,
        expansion_cache: Optional[ExpansionCache] = None,
        max_instances_per_parent: int = DEFAULT_MAX_INSTANCES_PER_PARENT,
        half_window_days: int = DEFAULT_HALF_WINDOW_DAYS,
        clock: Callable[[], datetime] = now_local,
        time_budget_ms: int = DEFAULT_EXPANSION_TIME_BUDGET_MS,
    ):
        self.rule_cache = rule_cache if rule_cache is not None else RuleCache()
        self.expansion_cache = expansion_cache if expansion_cache is not None else ExpansionCache()
        self.max_instances_per_parent = max_instances_per_parent
        self.half_window_days = half_window_days
        self.time_budget_ms = time_budget_ms
        self._clock = clock
        # Parent ids omitted from the most recent computed expansion
        self.corrupt_parents: list[str] = []

        logger.debug(
            "InstanceGenerator initialized: max_instances_per_parent=%d, half_window_days=%d, "
            "time_budget_ms=%d",
            self.max_instances_per_parent,
            self.half_window_days,
            self.time_budget_ms,
        )

    def window_for(self, now: Optional[datetime] = None) -> ExpansionWindow:
        """Expansion window centered on ``now`` (defaults to the clock)."""
        return ExpansionWindow.around(now or self._clock(), self.half_window_days)

    def generate_instances(
        self,
        raw: Sequence[Event],
        now: Optional[datetime] = None,
        window: Optional[ExpansionWindow] = None,
    ) -> list[Event]:
        """Produce the materialized event list for a raw record set.

        Args:
            raw: Parents, standalone events and exceptions
            now: Reference time for the default window
            window: Explicit window, overriding ``now``

        Returns:
            Events deduplicated by id, ordered by start time then id
        """
        window = window or self.window_for(now)
        key = fingerprint(raw, window)

        cached = self.expansion_cache.get(key)
        if cached is not None:
            logger.debug("Expansion cache hit (%d events)", len(cached))
            return cached

        events = self._expand(raw, window)
        self.expansion_cache.put(key, events)
        return list(events)

    def _expand(self, raw: Sequence[Event], window: ExpansionWindow) -> list[Event]:
        result: dict[str, Event] = {}
        for record in raw:
            if record.is_recurring or record.is_skipped:
                continue
            result[record.id] = record

        exceptions = exception_index(raw)
        corrupt: list[str] = []

        for parent in raw:
            if not parent.is_recurring or not parent.recurrence_rule:
                continue
            try:
                # Collect per parent so a failure mid-enumeration drops the whole series
                instances = list(self.expand_parent(parent, window.start, window.end, exceptions))
            except (RecurrenceParseError, ValueError, OverflowError, TypeError) as e:
                err = CorruptDataError(f"Cannot expand recurring event {parent.id}: {e}")
                logger.warning("Skipping instances of recurring event %s: %s", parent.id, err)
                corrupt.append(parent.id)
                continue

            for instance in instances:
                result.setdefault(instance.id, instance)

        self.corrupt_parents = corrupt
        logger.debug(
            "Expanded %d raw records into %d events (window %s .. %s)",
            len(raw),
            len(result),
            window.start.isoformat(),
            window.end.isoformat(),
        )
        return sorted(result.values(), key=lambda e: (e.start_time, e.id))

    def expand_parent(
        self,
        parent: Event,
        start: datetime,
        end: datetime,
        exceptions: Optional[dict[OccurrenceKey, Event]] = None,
        limit: Optional[int] = None,
    ) -> Iterator[Event]:
        """Yield generated instances of one parent within [start, end].

        Occurrences covered by an exception are not yielded. Enumeration stops
        early, with a warning, once ``time_budget_ms`` has elapsed.

        Args:
            parent: Recurring parent record
            start: Inclusive lower bound
            end: Inclusive upper bound
            exceptions: Exception index from ``exception_index``
            limit: Max instances; defaults to ``max_instances_per_parent``

        Yields:
            Generated instances in start order

        Raises:
            RecurrenceParseError: If the parent's rule cannot be parsed
        """
        rule = self.rule_cache.get(parent)
        exceptions = exceptions or {}
        cap = self.max_instances_per_parent if limit is None else limit

        budget_ms = self.time_budget_ms
        started = time.monotonic()

        emitted = 0
        for index, occurrence in enumerate(rule.occurrences(start, end)):
            if emitted >= cap:
                logger.debug(
                    "Recurring event %s limited to %d instances", parent.id, cap
                )
                return
            elapsed_ms = (time.monotonic() - started) * 1000
            if budget_ms > 0 and elapsed_ms > budget_ms:
                logger.warning(
                    "Expansion of recurring event %s exceeded time budget (%dms > %dms) "
                    "after %d occurrences, %d instances kept",
                    parent.id,
                    elapsed_ms,
                    budget_ms,
                    index,
                    emitted,
                )
                return
            if (parent.id, epoch_millis(occurrence)) in exceptions:
                continue
            yield synthesize_instance(parent, occurrence)
            emitted += 1
