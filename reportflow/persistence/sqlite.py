"""SQLite implementation of the workflow record store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from .models import WorkflowRecord
from .repository import WorkflowRecordStore


class SQLiteWorkflowRecordStore(WorkflowRecordStore):
    """Persist workflow snapshots using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # sqlite3 connections are not safe for concurrent use across threads
        self._write_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_records (
                id TEXT PRIMARY KEY,
                clinic_id TEXT NOT NULL,
                patient_id TEXT NOT NULL,
                overall_status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                snapshot TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_workflow_records_clinic ON workflow_records (clinic_id, created_at)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Store API
    async def save(self, record: WorkflowRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_records (id, clinic_id, patient_id, overall_status, created_at, snapshot)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                overall_status = excluded.overall_status,
                snapshot = excluded.snapshot
            """,
            record.id,
            record.subject.clinic_id,
            record.subject.patient_id,
            record.overall_status.value,
            record.created_at.isoformat(),
            record.model_dump_json(),
        )

    async def load(self, workflow_id: str) -> WorkflowRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT snapshot FROM workflow_records WHERE id = ?",
            workflow_id,
        )
        if not row:
            return None
        return WorkflowRecord.model_validate_json(row["snapshot"])

    async def list_records(
        self, clinic_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        if clinic_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT snapshot FROM workflow_records ORDER BY created_at DESC",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT snapshot FROM workflow_records WHERE clinic_id = ? ORDER BY created_at DESC",
                clinic_id,
            )
        return [WorkflowRecord.model_validate_json(r["snapshot"]) for r in rows]
