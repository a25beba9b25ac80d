"""In-memory record collection behind the CRUD HTTP service.

Records are stored exactly as submitted; the service has no knowledge of
recurrence or sanitization.
"""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Optional

logger = logging.getLogger(__name__)

Record = dict[str, Any]

TASK_CATEGORY = "Task"


class MemStorage:
    """Keyed record store preserving insertion order."""

    def __init__(self, records: Optional[list[Record]] = None) -> None:
        self._records: dict[str, Record] = {}
        for record in records or []:
            self._records[str(record["id"])] = copy.deepcopy(record)

    async def get_events(self) -> list[Record]:
        return [copy.deepcopy(record) for record in self._records.values()]

    async def get_event(self, event_id: str) -> Optional[Record]:
        record = self._records.get(event_id)
        return copy.deepcopy(record) if record is not None else None

    async def create_event(self, data: Record) -> Record:
        """Store a new record, keeping its id when it has one."""
        record = copy.deepcopy(data)
        record_id = str(record.get("id") or uuid.uuid4().hex)
        record["id"] = record_id
        self._records[record_id] = record
        logger.debug("Stored record %s", record_id)
        return copy.deepcopy(record)

    async def update_event(self, event_id: str, updates: Record) -> Optional[Record]:
        """Shallow-merge updates into an existing record; the id never changes."""
        existing = self._records.get(event_id)
        if existing is None:
            return None
        existing.update(copy.deepcopy(updates))
        existing["id"] = event_id
        return copy.deepcopy(existing)

    async def delete_event(self, event_id: str) -> bool:
        return self._records.pop(event_id, None) is not None

    async def get_projects(self) -> list[Record]:
        """Group task records by project name.

        Returns:
            ``[{"name": project, "tasks": [record, ...]}, ...]`` in first-seen order
        """
        projects: dict[str, list[Record]] = {}
        for record in self._records.values():
            if record.get("category") != TASK_CATEGORY:
                continue
            project = record.get("project")
            if not project:
                continue
            projects.setdefault(str(project), []).append(copy.deepcopy(record))
        return [{"name": name, "tasks": tasks} for name, tasks in projects.items()]
