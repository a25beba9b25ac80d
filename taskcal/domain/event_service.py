"""Event operations used by calendar consumers.

``EventService`` is the single entry point for reading the materialized event
list and for mutating the raw store: standalone events, recurring series,
per-occurrence exceptions and series splits.

Editing one occurrence of a series has three distinct meanings:

- ``EditScope.THIS``: the occurrence is skipped and a detached standalone
  event carrying the changes takes its place.
- ``EditScope.SERIES``: non-temporal fields of the parent change; every
  occurrence keeps its time.
- ``EditScope.FUTURE``: the series is split at the occurrence; the old parent
  ends just before it and a new parent with the changes starts there.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Union

from ..calendar.instance_generator import ExpansionCache, InstanceGenerator, synthesize_instance
from ..calendar.models import Event, EventStatus, normalize_keys
from ..calendar.recurrence import RecurrenceRule, RuleCache, validate_rule
from ..calendar.sanitizer import sanitize_event
from ..core.settings import EngineSettings
from ..core.time_utils import epoch_millis, now_local, parse_timestamp
from ..exceptions import RecurrenceParseError, ValidationError
from ..storage.backends import StorageBackend, backend_from_settings
from ..storage.raw_store import RawEventStore

logger = logging.getLogger(__name__)

EventData = Union[Event, Mapping[str, Any]]

# Horizon for upcoming instances of a series without an end
UPCOMING_HORIZON_DAYS = 730

_ROLE_FIELDS = frozenset({"id", "is_recurring", "parent_id", "is_exception", "is_skipped"})
_TEMPORAL_FIELDS = frozenset({"start_time", "end_time", "recurrence_rule", "recurrence_end"})
_SERIES_LOCKED_FIELDS = _ROLE_FIELDS | _TEMPORAL_FIELDS


class EditScope(str, Enum):
    """Which part of a series an occurrence edit applies to."""

    THIS = "this"
    SERIES = "series"
    FUTURE = "future"


def _fields(data: EventData) -> dict[str, Any]:
    """Snake_case field dict from an Event or a camel/snake mapping."""
    if isinstance(data, Event):
        return data.model_dump(exclude_none=True)
    if isinstance(data, Mapping):
        return normalize_keys(dict(data))
    raise ValidationError(f"Expected event data, got {type(data).__name__}")


def _without(fields: dict[str, Any], names: frozenset[str]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if key not in names}


def _find(raw: list[Event], event_id: str) -> Optional[Event]:
    return next((event for event in raw if event.id == event_id), None)


def _replace(raw: list[Event], updated: Event) -> list[Event]:
    return [updated if event.id == updated.id else event for event in raw]


class EventService:
    """Reads and mutations over the raw event store.

    All methods are coroutines and run on one event loop; there is no
    concurrent-writer support. Multi-step operations are not transactional but
    each step can be retried safely.
    """

    def __init__(
        self,
        store: RawEventStore,
        generator: Optional[InstanceGenerator] = None,
        clock: Callable[[], datetime] = now_local,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        """Initialize the service.

        Args:
            store: Raw event store
            generator: Instance generator; built over the store's expansion cache if omitted
            clock: Source of "now"
            id_factory: Source of new record ids
        """
        self.store = store
        self.generator = generator or InstanceGenerator(
            expansion_cache=store.expansion_cache, clock=clock
        )
        self._clock = clock
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        backend: Optional[StorageBackend] = None,
        clock: Callable[[], datetime] = now_local,
    ) -> "EventService":
        """Build a service with caches, store and generator wired from settings.

        Args:
            settings: Engine settings
            backend: Explicit backend; chosen from settings if omitted
            clock: Source of "now"

        Returns:
            Configured EventService
        """
        expansion_cache = ExpansionCache()
        store = RawEventStore(
            backend if backend is not None else backend_from_settings(settings),
            expansion_cache=expansion_cache,
            debounce_ms=settings.write_debounce_ms,
        )
        generator = InstanceGenerator(
            rule_cache=RuleCache(),
            expansion_cache=expansion_cache,
            max_instances_per_parent=settings.max_instances_per_parent,
            time_budget_ms=settings.expansion_time_budget_ms,
            half_window_days=settings.half_window_days,
            clock=clock,
        )
        return cls(store, generator=generator, clock=clock)

    @property
    def rule_cache(self) -> RuleCache:
        return self.generator.rule_cache

    def _new_id(self) -> str:
        return str(self._id_factory())

    async def _write(self, raw: list[Event]) -> None:
        await self.store.write_raw(raw)

    # Reads

    async def load_events(self, now: Optional[datetime] = None) -> list[Event]:
        """Materialized events around ``now``: standalone events, exceptions and instances."""
        raw = await self.store.read_raw()
        return self.generator.generate_instances(raw, now=now or self._clock())

    async def get_recurring_parents(self) -> list[Event]:
        """All stored recurring parents."""
        raw = await self.store.read_raw()
        return [event for event in raw if event.is_recurring and event.recurrence_rule]

    async def get_upcoming_instances_for_parent(self, parent_id: str, count: int = 5) -> list[Event]:
        """Next occurrences of one series from now on, exceptions included.

        Skipped occurrences are left out. The search ends at the series'
        recurrence end, or two years from now for open-ended series.

        Args:
            parent_id: Recurring parent id
            count: Maximum number of events returned

        Returns:
            Up to ``count`` events in start order; empty if the parent is unknown
        """
        if count <= 0:
            return []

        raw = await self.store.read_raw()
        parent = _find(raw, parent_id)
        if parent is None or not parent.is_recurring or not parent.recurrence_rule:
            return []

        start = self._clock()
        end = parent.recurrence_end or start + timedelta(days=UPCOMING_HORIZON_DAYS)

        exceptions = {
            event.occurrence_key: event
            for event in raw
            if event.parent_id == parent_id and event.is_exception
        }
        visible_exceptions = [
            event
            for event in exceptions.values()
            if not event.is_skipped and start <= event.start_time <= end
        ]

        try:
            generated = list(
                self.generator.expand_parent(parent, start, end, exceptions, limit=count)
            )
        except RecurrenceParseError as e:
            logger.warning("Cannot list upcoming instances of %s: %s", parent_id, e)
            generated = []

        merged = sorted(generated + visible_exceptions, key=lambda e: (e.start_time, e.id))
        return merged[:count]

    # Standalone events

    async def create_event(self, data: EventData) -> Event:
        """Create a standalone event with a new id.

        Raises:
            ValidationError: If the data has no valid start time
        """
        fields = _without(_fields(data), _ROLE_FIELDS | {"recurrence_rule", "recurrence_end"})
        fields["id"] = self._new_id()
        event = sanitize_event(fields)

        raw = await self.store.read_raw()
        raw.append(event)
        await self._write(raw)
        logger.info("Created event %s (%s)", event.id, event.title)
        return event

    async def update_event(self, event_id: str, patch: EventData) -> Optional[Event]:
        """Merge a patch into a stored record.

        Returns:
            Updated event, or None if no record has this id
        """
        raw = await self.store.read_raw()
        existing = _find(raw, event_id)
        if existing is None:
            logger.debug("update_event: %s not found", event_id)
            return None

        merged = existing.model_dump()
        merged.update(_without(_fields(patch), frozenset({"id"})))
        updated = sanitize_event(merged)

        await self._write(_replace(raw, updated))
        if existing.is_recurring or updated.is_recurring:
            self.rule_cache.invalidate(event_id)
        logger.debug("Updated event %s", event_id)
        return updated

    async def delete_event(self, event_id: str) -> bool:
        """Remove a stored record; a parent takes its exceptions with it.

        Returns:
            True if a record was removed
        """
        raw = await self.store.read_raw()
        target = _find(raw, event_id)
        if target is None:
            logger.debug("delete_event: %s not found", event_id)
            return False

        cascade = target.is_recurring
        remaining = [
            event
            for event in raw
            if event.id != event_id and not (cascade and event.parent_id == event_id)
        ]
        await self._write(remaining)
        if cascade:
            self.rule_cache.invalidate(event_id)
        logger.info("Deleted event %s (%d records removed)", event_id, len(raw) - len(remaining))
        return True

    # Recurring series

    async def create_recurring_event(
        self,
        data: EventData,
        rule: str,
        recurrence_end: Optional[Union[datetime, str]] = None,
    ) -> Event:
        """Create a recurring parent.

        Args:
            data: Event fields for the series
            rule: RFC 5545 rule, e.g. "FREQ=WEEKLY;BYDAY=MO,WE"
            recurrence_end: Exclusive end of the series

        Returns:
            The stored parent

        Raises:
            RecurrenceParseError: If the rule is invalid; nothing is written
            ValidationError: If the data has no valid start time
        """
        validate_rule(rule)

        fields = _without(_fields(data), _SERIES_LOCKED_FIELDS - {"start_time", "end_time"})
        fields.update(
            id=self._new_id(),
            is_recurring=True,
            recurrence_rule=rule.strip(),
            recurrence_end=parse_timestamp(recurrence_end),
        )
        parent = sanitize_event(fields)
        if not parent.recurrence_rule:
            raise RecurrenceParseError(f"Recurrence rule rejected: {rule!r}")
        # Parse once against the real anchor so failures surface here
        RecurrenceRule(parent.recurrence_rule, parent.start_time, parent.recurrence_end)

        raw = await self.store.read_raw()
        raw.append(parent)
        await self._write(raw)
        logger.info("Created recurring event %s (%s)", parent.id, parent.recurrence_rule)
        return parent

    async def update_recurring_series(self, parent_id: str, patch: EventData) -> Optional[Event]:
        """Merge a patch into a recurring parent.

        Returns:
            Updated parent, or None if no recurring parent has this id

        Raises:
            RecurrenceParseError: If the patch carries an invalid rule
        """
        raw = await self.store.read_raw()
        parent = _find(raw, parent_id)
        if parent is None or not parent.is_recurring:
            logger.debug("update_recurring_series: %s is not a recurring parent", parent_id)
            return None

        changes = _without(_fields(patch), _ROLE_FIELDS)
        if changes.get("recurrence_rule") is not None:
            validate_rule(changes["recurrence_rule"])

        merged = parent.model_dump()
        merged.update(changes)
        updated = sanitize_event(merged)

        await self._write(_replace(raw, updated))
        self.rule_cache.invalidate(parent_id)
        logger.debug("Updated recurring series %s", parent_id)
        return updated

    async def stop_recurring_series(self, parent_id: str) -> bool:
        """End a series now; occurrences from now on disappear."""
        updated = await self.update_recurring_series(parent_id, {"recurrence_end": self._clock()})
        return updated is not None

    async def create_exception(self, instance_data: EventData) -> Event:
        """Store an override for one occurrence.

        Idempotent per (parent id, start time): an existing exception for the
        same occurrence is returned unchanged.

        Args:
            instance_data: Occurrence data; must carry ``parentId`` and ``startTime``

        Returns:
            The new or existing exception

        Raises:
            ValidationError: If parent id or start time is missing
        """
        fields = _fields(instance_data)
        parent_id = fields.get("parent_id")
        start_time = parse_timestamp(fields.get("start_time"))
        if not parent_id:
            raise ValidationError("Exception data has no parent id")
        if start_time is None:
            raise ValidationError(f"Exception for {parent_id} has no valid start time")

        raw = await self.store.read_raw()
        key = (parent_id, epoch_millis(start_time))
        for event in raw:
            if event.is_exception and event.occurrence_key == key:
                logger.debug("Exception for %s at %s already exists", parent_id, start_time)
                return event

        fields = _without(fields, frozenset({"recurrence_rule", "recurrence_end"}))
        fields.update(
            id=self._new_id(),
            parent_id=parent_id,
            start_time=start_time,
            is_exception=True,
            is_recurring=False,
        )
        exception = sanitize_event(fields)

        raw.append(exception)
        await self._write(raw)
        logger.info(
            "Created %s exception %s for %s at %s",
            "skipped" if exception.is_skipped else "modified",
            exception.id,
            parent_id,
            start_time.isoformat(),
        )
        return exception

    async def split_series_at_occurrence(
        self,
        parent_id: str,
        occurrence_start: Union[datetime, str],
        new_data: EventData,
        rule: Optional[str] = None,
    ) -> Optional[Event]:
        """Apply an edit to one occurrence and every later one.

        The old parent is truncated to end 1 ms before the occurrence and loses
        its exceptions from that point on. A new parent starting at the
        occurrence carries the old fields overlaid with ``new_data``. Calling
        again with the same arguments returns the successor created the first
        time.

        Args:
            parent_id: Recurring parent id
            occurrence_start: Start of the first occurrence to change
            new_data: Field changes for the new series
            rule: Rule for the new series; defaults to the old rule

        Returns:
            The new parent, or None if ``parent_id`` is not a recurring parent

        Raises:
            RecurrenceParseError: If ``rule`` is invalid
            ValidationError: If ``occurrence_start`` cannot be parsed
        """
        split_at = parse_timestamp(occurrence_start)
        if split_at is None:
            raise ValidationError(f"Invalid split point: {occurrence_start!r}")

        raw = await self.store.read_raw()
        parent = _find(raw, parent_id)
        if parent is None or not parent.is_recurring or not parent.recurrence_rule:
            logger.debug("split_series_at_occurrence: %s is not a recurring parent", parent_id)
            return None

        new_rule = (rule or parent.recurrence_rule).strip()
        validate_rule(new_rule)

        changes = _fields(new_data)
        new_start = parse_timestamp(changes.get("start_time")) or split_at
        cut = split_at - timedelta(milliseconds=1)

        for event in raw:
            if (
                event.is_recurring
                and event.id != parent_id
                and event.recurrence_rule == new_rule
                and event.start_time == new_start
                and parent.recurrence_end == cut
            ):
                logger.info("Series %s already split at %s as %s", parent_id, split_at, event.id)
                return event

        base = parent.model_dump()
        base.update(_without(changes, _SERIES_LOCKED_FIELDS))
        if changes.get("end_time") is not None:
            new_end = parse_timestamp(changes["end_time"])
        else:
            duration = parent.duration
            new_end = new_start + duration if duration is not None else None
        base.update(
            id=self._new_id(),
            start_time=new_start,
            end_time=new_end,
            recurrence_rule=new_rule,
            recurrence_end=parent.recurrence_end,
            is_recurring=True,
            parent_id=None,
            is_exception=False,
            is_skipped=False,
        )
        successor = sanitize_event(base)
        truncated = parent.model_copy(update={"recurrence_end": cut})

        updated_raw = [
            truncated if event.id == parent_id else event
            for event in raw
            if not (event.parent_id == parent_id and event.is_exception and event.start_time >= split_at)
        ]
        updated_raw.append(successor)
        await self._write(updated_raw)
        self.rule_cache.invalidate(parent_id)

        logger.info("Split series %s at %s into %s", parent_id, split_at.isoformat(), successor.id)
        return successor

    # Occurrence-level operations

    async def reschedule_occurrence(
        self,
        event: Event,
        new_start: Union[datetime, str],
        new_end: Optional[Union[datetime, str]] = None,
    ) -> Optional[Event]:
        """Move an event to a new time.

        An occurrence of a series is detached: its original slot is skipped and
        a standalone event is created at the new time. Other events are updated
        in place. Without ``new_end`` the event keeps its duration.

        Returns:
            The moved event, or None if a stored event could not be found
        """
        start = parse_timestamp(new_start)
        if start is None:
            raise ValidationError(f"Invalid start time: {new_start!r}")
        end = parse_timestamp(new_end)
        if end is None and event.duration is not None:
            end = start + event.duration

        if event.parent_id:
            await self.skip_occurrence(event)
            fields = _fields(event)
            fields.update(start_time=start, end_time=end)
            return await self.create_event(fields)

        return await self.update_event(event.id, {"start_time": start, "end_time": end})

    async def skip_occurrence(self, event: Event) -> Event:
        """Hide one occurrence of a series.

        Raises:
            ValidationError: If the event is not part of a series
        """
        if not event.parent_id:
            raise ValidationError(f"Event {event.id} is not an occurrence of a series")

        if event.is_exception:
            updated = await self.update_event(event.id, {"is_skipped": True})
            if updated is not None:
                return updated

        fields = _fields(event)
        fields["is_skipped"] = True
        return await self.create_exception(fields)

    async def delete_occurrence(self, event: Event) -> bool:
        """Delete what the user sees: one occurrence of a series, or the stored record."""
        if event.parent_id:
            await self.skip_occurrence(event)
            return True
        return await self.delete_event(event.id)

    async def edit_occurrence(
        self,
        event: Event,
        changes: EventData,
        scope: Union[EditScope, str] = EditScope.THIS,
    ) -> Optional[Event]:
        """Apply an edit to an occurrence with the chosen scope.

        Standalone events are updated directly whatever the scope. A recurring
        parent is treated as its own first occurrence.

        Args:
            event: Event as displayed (instance, exception, parent or standalone)
            changes: Field changes
            scope: THIS, SERIES or FUTURE

        Returns:
            THIS: the detached standalone event; SERIES: the updated parent;
            FUTURE: the new parent. None if the target no longer exists.
        """
        scope = EditScope(scope)

        if event.is_standalone:
            return await self.update_event(event.id, changes)

        if event.is_recurring:
            event = synthesize_instance(event, event.start_time)

        parent_id = event.parent_id
        assert parent_id is not None  # set for every non-standalone event

        if scope is EditScope.SERIES:
            return await self.update_recurring_series(
                parent_id, _without(_fields(changes), _SERIES_LOCKED_FIELDS)
            )

        if scope is EditScope.FUTURE:
            change_fields = _fields(changes)
            return await self.split_series_at_occurrence(
                parent_id,
                event.start_time,
                change_fields,
                rule=change_fields.get("recurrence_rule"),
            )

        await self.skip_occurrence(event)
        fields = _fields(event)
        fields.update(_fields(changes))
        return await self.create_event(fields)

    async def toggle_complete(self, target: Union[str, Event]) -> Optional[Event]:
        """Flip completion; status follows as done/todo.

        A generated occurrence gets a (non-skipped) exception carrying the new
        state, so only that occurrence changes.

        Returns:
            The updated record, or None if nothing matched
        """
        if isinstance(target, Event) and target.is_generated_instance:
            completed = not target.is_completed
            fields = _fields(target)
            fields.update(
                is_completed=completed,
                status=(EventStatus.DONE if completed else EventStatus.TODO).value,
                is_skipped=False,
            )
            return await self.create_exception(fields)

        event_id = target.id if isinstance(target, Event) else target
        raw = await self.store.read_raw()
        existing = _find(raw, event_id)
        if existing is None:
            return None

        completed = not existing.is_completed
        return await self.update_event(
            event_id,
            {
                "is_completed": completed,
                "status": (EventStatus.DONE if completed else EventStatus.TODO).value,
            },
        )

    # Lifecycle

    async def flush(self) -> bool:
        """Persist pending writes now."""
        return await self.store.flush()

    async def close(self) -> None:
        """Flush pending writes and stop the write timer."""
        await self.store.close()
