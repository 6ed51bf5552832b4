"""In-process cache of workflow records in front of the record store."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from .errors import AlreadyTerminalError, WorkflowNotFoundError
from .persistence.models import WorkflowRecord
from .persistence.repository import WorkflowRecordStore

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """Write-through cache of live workflow records.

    The store is authoritative: ``put`` persists before the cached copy is
    replaced, so readers never see a state the store does not hold, and it
    never writes over a record the store already holds as terminal. Readers
    always receive copies. Terminal records stay cached until ``evict``.
    """

    def __init__(self, store: WorkflowRecordStore) -> None:
        self._store = store
        self._records: Dict[str, WorkflowRecord] = {}
        self._lock = asyncio.Lock()

    @property
    def store(self) -> WorkflowRecordStore:
        return self._store

    async def put(self, record: WorkflowRecord) -> None:
        """Persist ``record`` and then make it visible to readers.

        Raises:
            AlreadyTerminalError: If the stored snapshot already reached a
                terminal state, e.g. cancelled or reconciled by another
                process. The cache then holds the stored snapshot.
        """
        stored = await self._store.load(record.id)
        if stored is not None and stored.is_terminal:
            async with self._lock:
                self._records[record.id] = stored
            raise AlreadyTerminalError(record.id, stored.overall_status.value)

        snapshot = record.snapshot()
        await self._store.save(snapshot)
        async with self._lock:
            self._records[record.id] = snapshot

    async def get(self, workflow_id: str) -> WorkflowRecord:
        """Return a copy of the record, loading it from the store on a miss."""
        async with self._lock:
            cached = self._records.get(workflow_id)
        if cached is not None:
            return cached.snapshot()

        record = await self._store.load(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)
        logger.debug(f"Loaded workflow {workflow_id} from store")
        async with self._lock:
            # a concurrent put may have landed while we were loading
            current = self._records.setdefault(workflow_id, record)
        return current.snapshot()

    async def find(self, workflow_id: str) -> Optional[WorkflowRecord]:
        try:
            return await self.get(workflow_id)
        except WorkflowNotFoundError:
            return None

    def evict(self, workflow_id: str) -> None:
        """Drop the cached copy; the next read goes to the store."""
        self._records.pop(workflow_id, None)

    def cached_ids(self) -> list[str]:
        return list(self._records)
