"""Collaborator factories and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import ReportFlowConfig, load_config
from .base import (
    CompletionListener,
    ExternalJobClient,
    JobHandle,
    JobStatus,
    ObjectStore,
    UsageNotifier,
)
from .filesystem import FileSystemObjectStore
from .inmemory import (
    InMemoryCompletionListener,
    InMemoryJobClient,
    InMemoryObjectStore,
    InMemoryUsageNotifier,
)


def get_object_store(config: Optional[ReportFlowConfig] = None) -> ObjectStore:
    """Factory function to get the configured object store."""

    config = config or load_config()
    backend = config.storage.backend
    if backend == "memory":
        return InMemoryObjectStore()
    elif backend == "filesystem":
        return FileSystemObjectStore(config.storage.root)
    else:
        raise ValueError(f"Unsupported storage backend: {backend}")


def get_job_client(config: Optional[ReportFlowConfig] = None) -> ExternalJobClient:
    """Factory function to get the configured external job client."""

    config = config or load_config()
    jobs = config.external_jobs
    if jobs.backend == "inmemory":
        return InMemoryJobClient()
    elif jobs.backend == "http":
        from .http import HttpExternalJobClient

        if not jobs.base_url:
            raise ValueError("external_jobs.base_url is required for the http backend")
        return HttpExternalJobClient(
            jobs.base_url, api_key=jobs.api_key, timeout=jobs.request_timeout
        )
    else:
        raise ValueError(f"Unsupported external job backend: {jobs.backend}")


__all__ = [
    "CompletionListener",
    "ExternalJobClient",
    "JobHandle",
    "JobStatus",
    "ObjectStore",
    "UsageNotifier",
    "FileSystemObjectStore",
    "InMemoryCompletionListener",
    "InMemoryJobClient",
    "InMemoryObjectStore",
    "InMemoryUsageNotifier",
    "get_object_store",
    "get_job_client",
]
