"""Recurrence rule parsing and evaluation for taskcal."""

# ruff: noqa: I001
from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta
import logging
import re
from typing import TYPE_CHECKING, Optional

from dateutil.rrule import rrule, rrulebase, rrulestr

from ..core.time_utils import to_wall_clock
from ..exceptions import RecurrenceParseError

if TYPE_CHECKING:
    from .models import Event

logger = logging.getLogger(__name__)

# Any anchor works for syntax checks; the rule is rebuilt per parent for evaluation
_VALIDATION_ANCHOR = datetime(2000, 1, 1)

# Frequencies whose period has a fixed length, so the anchor can be moved by whole periods
_FIXED_PERIODS = {
    "SECONDLY": timedelta(seconds=1),
    "MINUTELY": timedelta(minutes=1),
    "HOURLY": timedelta(hours=1),
    "DAILY": timedelta(days=1),
    "WEEKLY": timedelta(weeks=1),
}

_RRULE_PREFIX = "RRULE:"
_UNTIL_UTC_RE = re.compile(r"(UNTIL=\d{8}(?:T\d{6})?)Z", re.IGNORECASE)


def normalize_rule(rule: Optional[str]) -> str:
    """Normalize a rule string for parsing.

    Strips an optional ``RRULE:`` prefix and reads ``UNTIL`` values with a trailing
    ``Z`` as wall-clock values.

    Args:
        rule: RFC 5545 RRULE value, e.g. "FREQ=WEEKLY;INTERVAL=2"

    Returns:
        Rule text ready for dateutil

    Raises:
        RecurrenceParseError: If the rule is empty or spans multiple lines
    """
    if not isinstance(rule, str) or not rule.strip():
        raise RecurrenceParseError("Empty recurrence rule")

    text = rule.strip()
    if "\n" in text or "\r" in text:
        raise RecurrenceParseError(f"Multi-line recurrence rules are not supported: {rule!r}")

    if text.upper().startswith(_RRULE_PREFIX):
        text = text[len(_RRULE_PREFIX):]

    return _UNTIL_UTC_RE.sub(r"\1", text)


def build_rrule(rule: str, dtstart: datetime) -> rrulebase:
    """Parse a rule string into a dateutil rule anchored at dtstart.

    Args:
        rule: Rule string
        dtstart: Anchor (first occurrence candidate)

    Returns:
        dateutil rrule/rruleset object

    Raises:
        RecurrenceParseError: If the rule cannot be parsed
    """
    text = normalize_rule(rule)
    try:
        return rrulestr(text, dtstart=to_wall_clock(dtstart))
    except (ValueError, TypeError, KeyError, AttributeError, OverflowError) as e:
        raise RecurrenceParseError(f"Invalid recurrence rule {rule!r}: {e}") from e


def validate_rule(rule: Optional[str]) -> None:
    """Raise RecurrenceParseError unless the rule is syntactically valid."""
    build_rrule(rule, _VALIDATION_ANCHOR)  # type: ignore[arg-type]


def is_valid_rule(rule: Optional[str]) -> bool:
    """Return True if the rule parses."""
    try:
        validate_rule(rule)
    except RecurrenceParseError:
        return False
    return True


def _fixed_period(rule: str) -> Optional[timedelta]:
    """Length of one rule period, or None unless the anchor may be moved.

    COUNT rules are excluded: their occurrences must be counted from the anchor.
    """
    parts: dict[str, str] = {}
    for item in normalize_rule(rule).split(";"):
        name, _, value = item.partition("=")
        parts[name.strip().upper()] = value.strip()

    if "COUNT" in parts:
        return None
    unit = _FIXED_PERIODS.get(parts.get("FREQ", "").upper())
    if unit is None:
        return None
    try:
        interval = int(parts.get("INTERVAL") or 1)
    except ValueError:
        return None
    return unit * interval if interval > 0 else None


class RecurrenceRule:
    """A parsed rule anchored at a parent's start time.

    Produces occurrence timestamps lazily. Each call to ``occurrences`` starts a
    fresh iteration, so one instance can be reused across expansion passes.
    """

    def __init__(
        self,
        rule: str,
        dtstart: datetime,
        recurrence_end: Optional[datetime] = None,
    ):
        """Parse the rule.

        Args:
            rule: Rule string
            dtstart: Anchor timestamp, included as the first occurrence
            recurrence_end: Exclusive upper bound of the series, if any

        Raises:
            RecurrenceParseError: If the rule cannot be parsed
        """
        self.rule = rule
        self.dtstart = to_wall_clock(dtstart)
        self.recurrence_end = to_wall_clock(recurrence_end) if recurrence_end else None
        self._rrule = build_rrule(rule, self.dtstart)
        self._period = _fixed_period(rule)

    @property
    def signature(self) -> tuple[str, datetime, Optional[datetime]]:
        """Inputs the parsed rule depends on."""
        return self.rule, self.dtstart, self.recurrence_end

    def occurrences(self, start: datetime, end: datetime) -> Iterator[datetime]:
        """Yield occurrences within [start, end], before recurrence_end.

        Args:
            start: Inclusive lower bound
            end: Inclusive upper bound

        Yields:
            Occurrence timestamps in ascending order
        """
        start = to_wall_clock(start)
        end = to_wall_clock(end)

        for occurrence in self._source_for(start).xafter(start, inc=True):
            if occurrence > end:
                return
            # recurrence_end is exclusive
            if self.recurrence_end is not None and occurrence >= self.recurrence_end:
                return
            yield occurrence

    def _source_for(self, start: datetime) -> rrulebase:
        """Rule to enumerate for a range beginning at ``start``.

        dateutil walks every occurrence from the anchor. Fixed-period rules are
        re-anchored at the last whole period before ``start`` instead, which
        keeps the phase of INTERVAL and the fields derived from the anchor.
        """
        if self._period is None or not isinstance(self._rrule, rrule) or start <= self.dtstart:
            return self._rrule
        periods = (start - self.dtstart) // self._period
        if periods < 1:
            return self._rrule
        return self._rrule.replace(dtstart=self.dtstart + periods * self._period)

    def between(self, start: datetime, end: datetime, limit: Optional[int] = None) -> list[datetime]:
        """Collect occurrences within [start, end], optionally capped at ``limit``."""
        result: list[datetime] = []
        for occurrence in self.occurrences(start, end):
            if limit is not None and len(result) >= limit:
                break
            result.append(occurrence)
        return result


def parse_rule(
    rule: str, dtstart: datetime, recurrence_end: Optional[datetime] = None
) -> RecurrenceRule:
    """Parse ``rule`` anchored at ``dtstart``.

    Raises:
        RecurrenceParseError: If the rule cannot be parsed
    """
    return RecurrenceRule(rule, dtstart, recurrence_end)


class RuleCache:
    """Per-parent cache of parsed rules, keyed by parent id.

    Entries are invalidated explicitly when a parent is mutated, and also rebuilt
    whenever the parent's rule, start or recurrence end no longer match.
    """

    def __init__(self) -> None:
        self._rules: dict[str, RecurrenceRule] = {}

    def get(self, parent: Event) -> RecurrenceRule:
        """Return the cached rule for a parent, parsing it on first use.

        Raises:
            RecurrenceParseError: If the parent's rule cannot be parsed
        """
        if not parent.recurrence_rule:
            raise RecurrenceParseError(f"Parent {parent.id} has no recurrence rule")

        signature = (parent.recurrence_rule, parent.start_time, parent.recurrence_end)
        cached = self._rules.get(parent.id)
        if cached is not None and cached.signature == signature:
            return cached

        rule = RecurrenceRule(parent.recurrence_rule, parent.start_time, parent.recurrence_end)
        self._rules[parent.id] = rule
        logger.debug("Parsed recurrence rule for parent %s: %s", parent.id, parent.recurrence_rule)
        return rule

    def invalidate(self, parent_id: str) -> None:
        """Drop the cached rule for a parent."""
        self._rules.pop(parent_id, None)

    def clear(self) -> None:
        """Drop all cached rules."""
        self._rules.clear()

    def __contains__(self, parent_id: object) -> bool:
        return parent_id in self._rules

    def __len__(self) -> int:
        return len(self._rules)
