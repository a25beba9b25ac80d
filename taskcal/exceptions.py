"""Exception hierarchy for the taskcal event engine.

Errors fall into four groups that callers handle differently:

- ValidationError: user-correctable input problems, surfaced to the caller.
- NotFoundError: the target of an operation does not exist.
- CorruptDataError: bad stored data met while reading or expanding. Logged and
  skipped, never propagated out of a read.
- StorageIOError: the persistence layer could not be read or written.
"""


class TaskCalError(Exception):
    """Base exception for all taskcal errors."""


class ValidationError(TaskCalError):
    """Input failed validation.

    Raised when:
    - A record has no usable id or start time
    - A recurrence rule submitted on a creation path cannot be parsed

    The operation is aborted and nothing is written.
    """


class RecurrenceParseError(ValidationError):
    """A recurrence rule string could not be parsed.

    Raised on user-facing creation paths. During expansion of stored data the
    same condition is logged and the affected series is skipped instead.
    """


class NotFoundError(TaskCalError):
    """The target record of an operation does not exist.

    Service-level update/delete operations report this as ``None``/``False``
    rather than raising; the type exists for callers that prefer to raise.
    """


class CorruptDataError(TaskCalError):
    """A stored record or rule is malformed.

    Raised when:
    - A persisted record cannot be converted into an Event
    - A parent's stored recurrence rule fails to parse or enumerate

    Readers log this and drop the affected record or series.
    """


class StorageIOError(TaskCalError):
    """The underlying persistence could not be read or written.

    Raised when:
    - The JSON store file cannot be opened, decoded or replaced
    - The remote CRUD service is unreachable or returns an error status

    The read path falls back to seed events; the write path keeps the pending
    state in memory.
    """
