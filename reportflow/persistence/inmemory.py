"""In-memory implementation of the workflow record store."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from .models import WorkflowRecord
from .repository import WorkflowRecordStore


class InMemoryWorkflowRecordStore(WorkflowRecordStore):
    """Store workflow snapshots in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._records: Dict[str, WorkflowRecord] = {}
        self._lock = asyncio.Lock()

    async def save(self, record: WorkflowRecord) -> None:
        async with self._lock:
            self._records[record.id] = record.snapshot()

    async def load(self, workflow_id: str) -> WorkflowRecord | None:
        async with self._lock:
            record = self._records.get(workflow_id)
            return record.snapshot() if record else None

    async def list_records(
        self, clinic_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        async with self._lock:
            records = [
                r.snapshot()
                for r in self._records.values()
                if clinic_id is None or r.subject.clinic_id == clinic_id
            ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)
