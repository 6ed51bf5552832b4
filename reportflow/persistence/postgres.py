"""PostgreSQL implementation of the workflow record store."""

from __future__ import annotations

from typing import Optional

import asyncpg

from .models import WorkflowRecord
from .repository import WorkflowRecordStore


class PostgresWorkflowRecordStore(WorkflowRecordStore):
    """Persist workflow snapshots using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_records (
                id TEXT PRIMARY KEY,
                clinic_id TEXT NOT NULL,
                patient_id TEXT NOT NULL,
                overall_status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                snapshot JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_workflow_records_clinic ON workflow_records (clinic_id, created_at DESC)"
        )

    # ------------------------------------------------------------------
    async def save(self, record: WorkflowRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_records (id, clinic_id, patient_id, overall_status, created_at, snapshot)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                ON CONFLICT (id) DO UPDATE
                SET overall_status = EXCLUDED.overall_status, snapshot = EXCLUDED.snapshot
                """,
                record.id,
                record.subject.clinic_id,
                record.subject.patient_id,
                record.overall_status.value,
                record.created_at,
                record.model_dump_json(),
            )
        finally:
            await conn.close()

    async def load(self, workflow_id: str) -> WorkflowRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT snapshot::text AS snapshot FROM workflow_records WHERE id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowRecord.model_validate_json(row["snapshot"])

    async def list_records(
        self, clinic_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        conn = await self._connect()
        try:
            if clinic_id is None:
                rows = await conn.fetch(
                    "SELECT snapshot::text AS snapshot FROM workflow_records ORDER BY created_at DESC"
                )
            else:
                rows = await conn.fetch(
                    "SELECT snapshot::text AS snapshot FROM workflow_records WHERE clinic_id = $1 ORDER BY created_at DESC",
                    clinic_id,
                )
        finally:
            await conn.close()
        return [WorkflowRecord.model_validate_json(r["snapshot"]) for r in rows]
