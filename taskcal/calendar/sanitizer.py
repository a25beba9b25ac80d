"""Normalization and bounding of untrusted event data before persistence.

``sanitize_event`` is pure and idempotent: sanitizing an already sanitized event
returns an equal event. Oversized values are truncated rather than rejected and
malformed optional values are dropped rather than coerced.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from enum import Enum
from typing import Any, Optional, Union

from ..core.time_utils import parse_timestamp
from ..exceptions import ValidationError
from .models import Event, EventStatus, Priority, normalize_keys
from .recurrence import is_valid_rule

logger = logging.getLogger(__name__)

# Field limits. Values beyond these are truncated, collections are capped.
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_CATEGORY_LENGTH = 100
MAX_COLOR_LENGTH = 50
MAX_PERSON_LENGTH = 200  # assignee, comment author
MAX_PROJECT_LENGTH = 200
MAX_TAGS = 20
MAX_TAG_LENGTH = 50
MAX_DEPENDENCIES = 50
MAX_SUBTASKS = 50
MAX_SUBTASK_TITLE_LENGTH = 200
MAX_ATTACHMENTS = 10
MAX_ATTACHMENT_NAME_LENGTH = 200
MAX_ATTACHMENT_URL_LENGTH = 2000
MAX_ATTACHMENT_TYPE_LENGTH = 200
MAX_COMMENTS = 200
MAX_COMMENT_LENGTH = 1000
MAX_RULE_LENGTH = 1000

DEFAULT_TITLE = "Untitled"
DEFAULT_CATEGORY = "Other"
DEFAULT_COLOR = "#000000"

_TRUTHY_STRINGS = ("1", "true", "yes", "on")


def sanitize_string(value: Any, max_length: int = 1000) -> Optional[str]:
    """Trim and truncate a string value.

    Args:
        value: Candidate value; non-strings are converted with str()
        max_length: Maximum length kept

    Returns:
        Trimmed, truncated string, or None if missing or blank
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        # Truncation can expose trailing whitespace
        return text[:max_length].rstrip() or None
    return text


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    return bool(value)


def _number(value: Any) -> Optional[float]:
    """Keep real numbers only; bools and numeric strings are dropped."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _choice(value: Any, vocabulary: type[Enum]) -> Optional[str]:
    if isinstance(value, Enum):
        value = value.value
    allowed = {member.value for member in vocabulary}
    return value if value in allowed else None


def _as_mapping(item: Any) -> Optional[Mapping[str, Any]]:
    if hasattr(item, "model_dump"):
        return item.model_dump()
    if isinstance(item, Mapping):
        return item
    return None


def _sanitize_tags(tags: Any) -> Optional[list[str]]:
    if not isinstance(tags, (list, tuple)):
        return None
    out: list[str] = []
    for tag in tags:
        if len(out) >= MAX_TAGS:
            break
        text = sanitize_string(tag, MAX_TAG_LENGTH)
        if text:
            out.append(text)
    return out or None


def _sanitize_dependencies(deps: Any) -> Optional[list[str]]:
    if not isinstance(deps, (list, tuple)):
        return None
    out = [text for text in (sanitize_string(d) for d in deps) if text]
    return out[:MAX_DEPENDENCIES] or None


def _sanitize_subtasks(subtasks: Any) -> Optional[list[dict[str, Any]]]:
    if not isinstance(subtasks, (list, tuple)):
        return None
    out: list[dict[str, Any]] = []
    for item in subtasks:
        if len(out) >= MAX_SUBTASKS:
            break
        data = _as_mapping(item)
        if data is None:
            continue
        subtask_id = sanitize_string(data.get("id"))
        if not subtask_id:
            continue
        out.append(
            {
                "id": subtask_id,
                "title": sanitize_string(data.get("title"), MAX_SUBTASK_TITLE_LENGTH) or "",
                "completed": _flag(data.get("completed")),
            }
        )
    return out or None


def _sanitize_attachments(attachments: Any) -> Optional[list[dict[str, Any]]]:
    if not isinstance(attachments, (list, tuple)):
        return None
    out: list[dict[str, Any]] = []
    for item in attachments:
        if len(out) >= MAX_ATTACHMENTS:
            break
        data = _as_mapping(item)
        if data is None:
            continue
        name = sanitize_string(data.get("name"), MAX_ATTACHMENT_NAME_LENGTH)
        url = sanitize_string(data.get("url"), MAX_ATTACHMENT_URL_LENGTH)
        if not name or not url:
            continue
        out.append(
            {
                "name": name,
                "url": url,
                "type": sanitize_string(data.get("type"), MAX_ATTACHMENT_TYPE_LENGTH),
            }
        )
    return out or None


def _sanitize_comments(comments: Any) -> Optional[list[dict[str, Any]]]:
    if not isinstance(comments, (list, tuple)):
        return None
    out: list[dict[str, Any]] = []
    for item in comments:
        if len(out) >= MAX_COMMENTS:
            break
        data = _as_mapping(item)
        if data is None:
            continue
        comment_id = sanitize_string(data.get("id"))
        if not comment_id:
            continue
        timestamp = data.get("timestamp")
        out.append(
            {
                "id": comment_id,
                "author": sanitize_string(data.get("author"), MAX_PERSON_LENGTH) or "",
                "content": sanitize_string(data.get("content"), MAX_COMMENT_LENGTH) or "",
                "timestamp": str(timestamp).strip() if timestamp is not None else "",
            }
        )
    return out or None


def _sanitize_rule(rule: Any) -> Optional[str]:
    text = sanitize_string(rule, MAX_RULE_LENGTH)
    if text and is_valid_rule(text):
        return text
    if text:
        logger.debug("Dropping invalid recurrence rule from record: %r", text)
    return None


def sanitize_event(candidate: Union[Event, Mapping[str, Any]]) -> Event:
    """Produce a safe-to-persist Event from partially trusted data.

    Args:
        candidate: Event or mapping with camelCase or snake_case keys

    Returns:
        Sanitized Event

    Raises:
        ValidationError: If the record has no id or no parseable start time
    """
    if isinstance(candidate, Event):
        raw = normalize_keys(candidate.to_record())
    elif isinstance(candidate, Mapping):
        raw = normalize_keys(dict(candidate))
    else:
        raise ValidationError(f"Cannot sanitize {type(candidate).__name__}")

    event_id = sanitize_string(raw.get("id"))
    if not event_id:
        raise ValidationError("Event record has no id")

    start_time = parse_timestamp(raw.get("start_time"))
    if start_time is None:
        raise ValidationError(f"Event {event_id} has no valid start time")

    end_time = parse_timestamp(raw.get("end_time"))
    if end_time is not None and end_time < start_time:
        end_time = start_time

    fields: dict[str, Any] = {
        "id": event_id,
        "title": sanitize_string(raw.get("title"), MAX_TITLE_LENGTH) or DEFAULT_TITLE,
        "description": sanitize_string(raw.get("description"), MAX_DESCRIPTION_LENGTH),
        "start_time": start_time,
        "end_time": end_time,
        "category": sanitize_string(raw.get("category"), MAX_CATEGORY_LENGTH) or DEFAULT_CATEGORY,
        "color": sanitize_string(raw.get("color"), MAX_COLOR_LENGTH) or DEFAULT_COLOR,
        "is_completed": _flag(raw.get("is_completed")),
        "is_all_day": _flag(raw.get("is_all_day")),
        "recurrence_rule": _sanitize_rule(raw.get("recurrence_rule")),
        "recurrence_end": parse_timestamp(raw.get("recurrence_end")),
        "is_recurring": _flag(raw.get("is_recurring")),
        "parent_id": sanitize_string(raw.get("parent_id")),
        "is_exception": _flag(raw.get("is_exception")),
        "is_skipped": _flag(raw.get("is_skipped")),
        "priority": _choice(raw.get("priority"), Priority),
        "status": _choice(raw.get("status"), EventStatus),
        "assignee": sanitize_string(raw.get("assignee"), MAX_PERSON_LENGTH),
        "project": sanitize_string(raw.get("project"), MAX_PROJECT_LENGTH),
        "tags": _sanitize_tags(raw.get("tags")),
        "estimated_hours": _number(raw.get("estimated_hours")),
        "actual_hours": _number(raw.get("actual_hours")),
        "dependencies": _sanitize_dependencies(raw.get("dependencies")),
        "subtasks": _sanitize_subtasks(raw.get("subtasks")),
        "attachments": _sanitize_attachments(raw.get("attachments")),
        "comments": _sanitize_comments(raw.get("comments")),
    }
    return Event(**fields)
