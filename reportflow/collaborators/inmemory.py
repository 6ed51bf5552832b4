"""In-process collaborators for testing and local runs."""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Literal, Optional, Tuple

from ..persistence.models import SubjectRef
from .base import (
    CompletionListener,
    ExternalJobClient,
    JobHandle,
    JobStatus,
    ObjectStore,
    UsageNotifier,
)


def sample_processing_report(job_id: str) -> Dict[str, Any]:
    """Report in the shape returned by the signal processor."""
    return {
        "job_id": job_id,
        "report_type": "qEEG Analysis",
        "findings": {
            "dominantFrequency": "10.2 Hz",
            "alphaBlockingResponse": "Normal",
            "asymmetryIndex": "0.15",
            "artifactPercentage": "12%",
            "recordingQuality": "Good",
        },
        "recommendations": [
            "Continue monitoring alpha wave patterns",
            "Consider follow-up in 3 months",
        ],
    }


class InMemoryObjectStore(ObjectStore):
    """Keep uploaded objects in a dict."""

    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.objects: Dict[str, bytes] = {}
        self._fail_with = fail_with
        self._lock = asyncio.Lock()

    async def put(self, data: bytes, key: str) -> str:
        if self._fail_with is not None:
            raise self._fail_with
        async with self._lock:
            self.objects[key] = bytes(data)
        return f"memory://{key}"


class InMemoryJobClient(ExternalJobClient):
    """Scripted stand-in for the external signal processor.

    ``outcome`` decides how every submitted job ends: ``completed`` after
    ``polls_until_done`` polls, ``failed`` with ``message``, or ``never``
    (stays processing forever).
    """

    def __init__(
        self,
        outcome: Literal["completed", "failed", "never"] = "completed",
        polls_until_done: int = 1,
        result: Optional[Dict[str, Any]] = None,
        message: str = "Processing failed",
    ) -> None:
        self.outcome = outcome
        self.polls_until_done = polls_until_done
        self.result = result
        self.message = message
        self.submissions: List[Tuple[str, Dict[str, Any]]] = []
        self.job_ids: List[str] = []
        self.cancelled: List[str] = []
        self.closed = False
        self._polls: Dict[str, int] = defaultdict(int)

    async def submit(self, reference: str, metadata: Dict[str, Any]) -> JobHandle:
        job_id = f"job_{uuid.uuid4().hex[:12]}"
        self.submissions.append((reference, dict(metadata)))
        self.job_ids.append(job_id)
        return JobHandle(job_id=job_id, estimated_time="5-10 minutes")

    async def poll(self, handle: JobHandle) -> JobStatus:
        if handle.job_id in self.cancelled:
            return JobStatus(job_id=handle.job_id, status="cancelled")
        self._polls[handle.job_id] += 1
        if self.outcome == "never" or self._polls[handle.job_id] < self.polls_until_done:
            return JobStatus(
                job_id=handle.job_id, status="processing", message="Processing EEG data..."
            )
        if self.outcome == "failed":
            return JobStatus(job_id=handle.job_id, status="failed", message=self.message)
        return JobStatus(job_id=handle.job_id, status="completed", progress=100)

    async def fetch_result(self, handle: JobHandle) -> Dict[str, Any]:
        if self.result is not None:
            return dict(self.result)
        return sample_processing_report(handle.job_id)

    async def cancel(self, handle: JobHandle) -> None:
        self.cancelled.append(handle.job_id)

    async def aclose(self) -> None:
        self.closed = True


class InMemoryUsageNotifier(UsageNotifier):
    """Count reports per clinic."""

    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.counts: Dict[str, int] = defaultdict(int)
        self._fail_with = fail_with

    async def increment(self, clinic_id: str) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self.counts[clinic_id] += 1


class InMemoryCompletionListener(CompletionListener):
    """Remember every consolidated report it is handed."""

    def __init__(self) -> None:
        self.completed: List[Tuple[SubjectRef, Dict[str, Any]]] = []

    async def workflow_completed(
        self, subject: SubjectRef, final_result: Dict[str, Any]
    ) -> None:
        self.completed.append((subject, final_result))
