from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from ..collaborators.base import JobStatus
from ..errors import ExternalProcessingError, ExternalTimeoutError, WorkflowCancelledError

logger = logging.getLogger(__name__)


async def interruptible_sleep(delay: float, cancelled: Optional[asyncio.Event]) -> bool:
    """Sleep for ``delay`` seconds; return ``True`` early if ``cancelled`` is set."""
    if cancelled is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancelled.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


async def wait_for_job(
    poll: Callable[[], Awaitable[JobStatus]],
    *,
    interval: float,
    max_wait: float,
    cancelled: Optional[asyncio.Event] = None,
    clock: Callable[[], float] = time.monotonic,
) -> JobStatus:
    """Poll an external job at a fixed interval until it finishes.

    Returns the completed status. Raises ``ExternalProcessingError`` when the
    job reports failure, ``ExternalTimeoutError`` once ``max_wait`` elapses and
    ``WorkflowCancelledError`` as soon as ``cancelled`` is observed.
    """
    started = clock()
    job_id: Optional[str] = None
    while True:
        if cancelled is not None and cancelled.is_set():
            raise WorkflowCancelledError("Cancellation requested while waiting for job")

        status = await poll()
        job_id = status.job_id
        if status.status == "completed":
            return status
        if status.status == "failed":
            raise ExternalProcessingError(
                f"External processing failed: {status.message or 'no message'}"
            )
        if status.status == "cancelled":
            raise ExternalProcessingError(f"External job {job_id} was cancelled")

        elapsed = clock() - started
        remaining = max_wait - elapsed
        if remaining <= 0:
            raise ExternalTimeoutError(max_wait, job_id)
        logger.debug(f"Job {job_id} still processing after {elapsed:.1f}s")
        if await interruptible_sleep(min(interval, remaining), cancelled):
            raise WorkflowCancelledError("Cancellation requested while waiting for job")
