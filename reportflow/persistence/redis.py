"""Redis implementation of the workflow record store."""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as redis

from .models import WorkflowRecord
from .repository import WorkflowRecordStore


class RedisWorkflowRecordStore(WorkflowRecordStore):
    """Keep one JSON snapshot per workflow key, indexed by clinic."""

    def __init__(self, url: str, namespace: str = "reportflow") -> None:
        self.url = url
        self.namespace = namespace
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        self._redis = redis.from_url(self.url, decode_responses=True)
        await self._redis.ping()

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _key(self, workflow_id: str) -> str:
        return f"{self.namespace}:workflow:{workflow_id}"

    def _index(self, clinic_id: Optional[str] = None) -> str:
        if clinic_id is None:
            return f"{self.namespace}:workflows"
        return f"{self.namespace}:clinic:{clinic_id}:workflows"

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    # ------------------------------------------------------------------
    async def save(self, record: WorkflowRecord) -> None:
        client = await self._client()
        score = record.created_at.timestamp()
        async with client.pipeline(transaction=True) as pipe:
            pipe.set(self._key(record.id), record.model_dump_json())
            pipe.zadd(self._index(), {record.id: score})
            pipe.zadd(self._index(record.subject.clinic_id), {record.id: score})
            await pipe.execute()

    async def load(self, workflow_id: str) -> WorkflowRecord | None:
        client = await self._client()
        data = await client.get(self._key(workflow_id))
        if data is None:
            return None
        return WorkflowRecord.model_validate_json(data)

    async def list_records(
        self, clinic_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        client = await self._client()
        ids = await client.zrevrange(self._index(clinic_id), 0, -1)
        if not ids:
            return []
        values = await client.mget([self._key(i) for i in ids])
        return [WorkflowRecord.model_validate_json(v) for v in values if v is not None]
