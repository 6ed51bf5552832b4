"""Persistence layer for reportflow workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ReportFlowConfig, load_config
from .inmemory import InMemoryWorkflowRecordStore
from .models import (
    STAGE_ORDER,
    TERMINAL_STATUSES,
    InputFile,
    StageError,
    StageName,
    StageState,
    StageStatus,
    SubjectRef,
    WorkflowRecord,
    WorkflowStatus,
)
from .repository import WorkflowRecordStore
from .sqlite import SQLiteWorkflowRecordStore

_store_instance: WorkflowRecordStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[ReportFlowConfig] = None
) -> WorkflowRecordStore:
    """Factory function to obtain a workflow record store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``REPORTFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("REPORTFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _store_instance = InMemoryWorkflowRecordStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteWorkflowRecordStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresWorkflowRecordStore

        _store_instance = PostgresWorkflowRecordStore(database_url)
    elif database_url.startswith("redis://") or database_url.startswith("rediss://"):
        from .redis import RedisWorkflowRecordStore

        _store_instance = RedisWorkflowRecordStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "STAGE_ORDER",
    "TERMINAL_STATUSES",
    "InputFile",
    "StageError",
    "StageName",
    "StageState",
    "StageStatus",
    "SubjectRef",
    "WorkflowRecord",
    "WorkflowStatus",
    "WorkflowRecordStore",
    "InMemoryWorkflowRecordStore",
    "SQLiteWorkflowRecordStore",
    "get_store",
]
