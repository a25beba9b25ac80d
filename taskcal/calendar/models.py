"""Data models for taskcal events."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.time_utils import epoch_millis, to_wall_clock


class Priority(str, Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class EventStatus(str, Enum):
    """Task workflow status."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class _WireModel(BaseModel):
    """Base for models stored with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class Subtask(_WireModel):
    """Checklist item attached to an event."""

    id: str
    title: str = ""
    completed: bool = False


class Attachment(_WireModel):
    """Link to an external file."""

    name: str
    url: str
    type: Optional[str] = None


class Comment(_WireModel):
    """Discussion entry on an event."""

    id: str
    author: str = ""
    content: str = ""
    timestamp: str = ""


class Event(_WireModel):
    """A calendar event in one of its roles.

    The same type represents:
    - a standalone event (no ``is_recurring``, no ``parent_id``)
    - a recurring parent (``is_recurring`` with a ``recurrence_rule``)
    - an exception overriding one occurrence (``parent_id`` + ``is_exception``)
    - a generated instance (``parent_id`` without ``is_exception``; never stored)

    All timestamps are naive wall-clock values.
    """

    id: str
    title: str = "Untitled"
    description: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    category: str = "Other"
    color: str = "#000000"
    is_completed: bool = False
    is_all_day: bool = False

    # Recurrence role
    recurrence_rule: Optional[str] = None
    recurrence_end: Optional[datetime] = Field(
        default=None, description="Exclusive upper bound for the series"
    )
    is_recurring: bool = False
    parent_id: Optional[str] = None
    is_exception: bool = False
    is_skipped: bool = False

    # Project management payload
    priority: Optional[Priority] = None
    status: Optional[EventStatus] = None
    assignee: Optional[str] = None
    project: Optional[str] = None
    tags: Optional[list[str]] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    dependencies: Optional[list[str]] = None
    subtasks: Optional[list[Subtask]] = None
    attachments: Optional[list[Attachment]] = None
    comments: Optional[list[Comment]] = None

    @field_validator("start_time", "end_time", "recurrence_end")
    @classmethod
    def _strip_tz(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_wall_clock(value) if value is not None else None

    @property
    def is_generated_instance(self) -> bool:
        """True for ephemeral occurrences synthesized from a parent."""
        return bool(self.parent_id) and not self.is_exception and not self.is_recurring

    @property
    def is_standalone(self) -> bool:
        """True when the event has no recurrence relationship."""
        return not self.is_recurring and not self.parent_id

    @property
    def duration(self) -> Optional[timedelta]:
        """Length of the event, or None for point-in-time events."""
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def occurrence_key(self) -> tuple[Optional[str], int]:
        """(parent_id, start epoch millis) identifying the occurrence this record covers."""
        return self.parent_id, epoch_millis(self.start_time)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the JSON-ready camelCase form used for persistence."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Field lookup used to accept both camelCase and snake_case keys in patches
FIELD_ALIASES: dict[str, str] = {to_camel(name): name for name in Event.model_fields}


def normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Map camelCase keys to Event field names; unknown keys are dropped.

    Args:
        data: Mapping with camelCase or snake_case keys

    Returns:
        Dict keyed by snake_case field names
    """
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        if key in Event.model_fields:
            normalized[key] = value
        elif key in FIELD_ALIASES:
            normalized[FIELD_ALIASES[key]] = value
    return normalized
