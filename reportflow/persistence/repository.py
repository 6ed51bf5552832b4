"""Store abstraction for workflow record persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import WorkflowRecord


class WorkflowRecordStore(Protocol):
    """Protocol for workflow snapshot persistence backends.

    Records are keyed by workflow id; each ``save`` replaces the whole
    snapshot. Implementations must tolerate concurrent saves of different ids.
    """

    async def save(self, record: WorkflowRecord) -> None:
        """Persist the full snapshot of ``record``."""

    async def load(self, workflow_id: str) -> WorkflowRecord | None:
        """Retrieve the workflow record by id."""

    async def list_records(
        self, clinic_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        """Return persisted records, newest first, optionally for one clinic."""
