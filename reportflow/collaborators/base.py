"""Interfaces of the external services a workflow depends on."""

from __future__ import annotations

import abc
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..persistence.models import SubjectRef


FINISHED_JOB_STATUSES = frozenset({"completed", "failed", "cancelled"})


class JobHandle(BaseModel):
    """Reference to a job accepted by the external processor."""

    job_id: str
    estimated_time: Optional[str] = None


class JobStatus(BaseModel):
    """One observation of an external job.

    ``completed``, ``failed`` and ``cancelled`` end the job; any other status
    reported by the processor (``queued``, ``running``...) means it is still
    in progress.
    """

    job_id: str
    status: str
    message: Optional[str] = None
    progress: Optional[int] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_JOB_STATUSES


class ObjectStore(metaclass=abc.ABCMeta):
    """Durable binary storage for uploaded recordings."""

    @abc.abstractmethod
    async def put(self, data: bytes, key: str) -> str:
        """Store ``data`` under ``key`` and return a content reference."""
        raise NotImplementedError


class ExternalJobClient(metaclass=abc.ABCMeta):
    """Asynchronous third-party signal processor."""

    @abc.abstractmethod
    async def submit(self, reference: str, metadata: Dict[str, Any]) -> JobHandle:
        """Submit the stored file for processing."""
        raise NotImplementedError

    @abc.abstractmethod
    async def poll(self, handle: JobHandle) -> JobStatus:
        """Return the current status of a submitted job."""
        raise NotImplementedError

    @abc.abstractmethod
    async def fetch_result(self, handle: JobHandle) -> Dict[str, Any]:
        """Download the result payload of a completed job."""
        raise NotImplementedError

    async def cancel(self, handle: JobHandle) -> None:
        """Ask the processor to stop a job (no-op by default)."""
        pass

    async def aclose(self) -> None:
        """Release connections held by the client (no-op by default)."""
        pass


class UsageNotifier(metaclass=abc.ABCMeta):
    """Counts completed reports against a clinic's plan."""

    @abc.abstractmethod
    async def increment(self, clinic_id: str) -> None:
        raise NotImplementedError


class CompletionListener(metaclass=abc.ABCMeta):
    """Receives the consolidated report once a workflow is finalized."""

    @abc.abstractmethod
    async def workflow_completed(
        self, subject: SubjectRef, final_result: Dict[str, Any]
    ) -> None:
        raise NotImplementedError
