"""Workflow orchestrator driving the fixed report-processing pipeline."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from .collaborators import get_job_client, get_object_store
from .collaborators.base import CompletionListener, UsageNotifier
from .config import ReportFlowConfig, load_config
from .errors import (
    AlreadyTerminalError,
    InvalidInputError,
    StageFailure,
    WorkflowCancelledError,
)
from .persistence import get_store
from .persistence.models import (
    STAGE_ORDER,
    InputFile,
    StageError,
    StageName,
    SubjectRef,
    WorkflowRecord,
    utcnow,
)
from .persistence.repository import WorkflowRecordStore
from .registry import WorkflowRegistry
from .steps import StepExecutor

logger = logging.getLogger(__name__)


def _next_stage(stage: StageName) -> Optional[StageName]:
    index = STAGE_ORDER.index(stage)
    return STAGE_ORDER[index + 1] if index + 1 < len(STAGE_ORDER) else None


class WorkflowOrchestrator:
    """Start, observe and cancel report-processing workflows.

    Each ``start`` spawns one task that owns the workflow id and is its only
    writer; every transition is persisted through the registry before the
    next stage begins.
    """

    def __init__(
        self,
        executor: StepExecutor,
        store: Optional[WorkflowRecordStore] = None,
        registry: Optional[WorkflowRegistry] = None,
        config: Optional[ReportFlowConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._executor = executor
        self._registry = registry or WorkflowRegistry(store or get_store())
        self._config = config or ReportFlowConfig()
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    @classmethod
    def from_config(
        cls,
        config: Optional[ReportFlowConfig] = None,
        usage_notifier: Optional[UsageNotifier] = None,
        listeners: Iterable[CompletionListener] = (),
        store: Optional[WorkflowRecordStore] = None,
    ) -> "WorkflowOrchestrator":
        """Build an orchestrator wired to the configured backends."""
        config = config or load_config()
        store = store or get_store(config=config)
        executor = StepExecutor(
            get_object_store(config),
            get_job_client(config),
            usage_notifier,
            listeners,
            polling=config.polling,
            scoring=config.scoring,
            key_prefix=config.storage.key_prefix,
        )
        return cls(executor, store=store, config=config)

    @property
    def registry(self) -> WorkflowRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Public API
    async def start(
        self,
        data: bytes,
        file_name: str,
        subject: Union[SubjectRef, Mapping[str, Any]],
    ) -> str:
        """Create a workflow for ``data`` and begin executing it.

        Returns the workflow id as soon as the initial record is persisted;
        execution continues in a background task.

        Raises:
            InvalidInputError: If the file is empty, unnamed or the subject
                lacks a patient or clinic id.
        """
        subject_ref = self._validate(data, file_name, subject)
        now = self._clock()
        record = WorkflowRecord(
            subject=subject_ref,
            input_file=InputFile(name=file_name, size=len(data)),
            created_at=now,
            estimated_completion=now
            + timedelta(seconds=self._config.estimated_duration_seconds),
        )
        await self._registry.put(record)

        cancelled = asyncio.Event()
        self._cancel_events[record.id] = cancelled
        task = asyncio.create_task(
            self._execute(record.id, bytes(data), cancelled),
            name=f"workflow-{record.id}",
        )
        self._tasks[record.id] = task
        task.add_done_callback(lambda _t, wid=record.id: self._forget(wid))
        logger.info(
            f"Started workflow {record.id} for patient={subject_ref.patient_id} "
            f"clinic={subject_ref.clinic_id} file={file_name} ({len(data)} bytes)"
        )
        return record.id

    async def get_status(self, workflow_id: str) -> WorkflowRecord:
        """Return the latest persisted snapshot of the workflow."""
        return await self._registry.get(workflow_id)

    async def cancel(self, workflow_id: str) -> None:
        """Request cancellation of a non-terminal workflow.

        A live workflow observes the request at its next check point. A
        non-terminal workflow with no live task in this process is
        cancelled immediately.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            AlreadyTerminalError: If it already completed, failed or was
                cancelled.
        """
        record = await self._registry.get(workflow_id)
        if record.is_terminal:
            raise AlreadyTerminalError(workflow_id, record.overall_status.value)

        event = self._cancel_events.get(workflow_id)
        if event is not None:
            event.set()
            logger.info(f"Cancellation requested for workflow {workflow_id}")
            return

        record.cancel(at=self._clock())
        await self._registry.put(record)
        logger.info(f"Cancelled orphaned workflow {workflow_id}")

    async def wait(
        self, workflow_id: str, timeout: Optional[float] = None
    ) -> WorkflowRecord:
        """Wait for a live workflow to finish and return its snapshot."""
        task = self._tasks.get(workflow_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self.get_status(workflow_id)

    async def list_workflows(self, clinic_id: Optional[str] = None) -> list[WorkflowRecord]:
        """All persisted workflows, newest first."""
        return await self._registry.store.list_records(clinic_id)

    def active_workflows(self) -> list[str]:
        return [wid for wid, task in self._tasks.items() if not task.done()]

    async def reconcile(self, older_than: Optional[float] = None) -> list[str]:
        """Fail stale non-terminal workflows that no task is advancing.

        Intended to run after a restart. Only records created more than
        ``older_than`` seconds ago (default from configuration) are touched.
        """
        threshold = (
            older_than if older_than is not None else self._config.reconcile_after_seconds
        )
        now = self._clock()
        cutoff = now - timedelta(seconds=threshold)
        live = set(self.active_workflows())
        reconciled = []
        for record in await self._registry.store.list_records():
            if record.is_terminal or record.id in live:
                continue
            if record.created_at > cutoff:
                continue
            record.interrupt("Execution was interrupted before completion", at=now)
            try:
                await self._registry.put(record)
            except AlreadyTerminalError:
                continue
            reconciled.append(record.id)
            logger.warning(f"Marked interrupted workflow {record.id} as failed")
        return reconciled

    async def close(self) -> None:
        """Cancel live workflow tasks, wait for them to unwind and release
        the collaborators' connections."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._executor.aclose()

    # ------------------------------------------------------------------
    # Execution
    def _validate(
        self, data: bytes, file_name: str, subject: Union[SubjectRef, Mapping[str, Any]]
    ) -> SubjectRef:
        if not isinstance(data, (bytes, bytearray, memoryview)) or len(data) == 0:
            raise InvalidInputError("File content must be non-empty bytes")
        if not isinstance(file_name, str) or not file_name.strip():
            raise InvalidInputError("File name is required")
        if subject is None:
            raise InvalidInputError("Subject reference is required")
        try:
            subject_ref = (
                subject
                if isinstance(subject, SubjectRef)
                else SubjectRef.model_validate(subject)
            )
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid subject reference: {exc}") from exc
        if not subject_ref.patient_id.strip() or not subject_ref.clinic_id.strip():
            raise InvalidInputError("Subject reference needs a patient id and a clinic id")
        return subject_ref

    def _forget(self, workflow_id: str) -> None:
        self._tasks.pop(workflow_id, None)
        self._cancel_events.pop(workflow_id, None)
        self._registry.evict(workflow_id)

    async def _execute(
        self, workflow_id: str, data: bytes, cancelled: asyncio.Event
    ) -> None:
        try:
            await self._run_stages(workflow_id, data, cancelled)
        except AlreadyTerminalError as exc:
            logger.warning(
                f"Workflow {workflow_id} stopped; the store already holds it as {exc.status}"
            )
        except Exception as exc:
            logger.exception(f"Workflow {workflow_id} aborted by unexpected error")
            await self._record_abort(workflow_id, exc)

    async def _run_stages(
        self, workflow_id: str, data: bytes, cancelled: asyncio.Event
    ) -> None:
        record = await self._registry.get(workflow_id)
        if cancelled.is_set():
            record.cancel(at=self._clock())
            await self._registry.put(record)
            logger.info(f"Workflow {workflow_id} cancelled before starting")
            return

        stage = STAGE_ORDER[0]
        record.begin_stage(stage, at=self._clock())
        await self._registry.put(record)

        while True:
            logger.info(f"Workflow {workflow_id}: running {stage.value}")
            try:
                result = await self._executor.run(stage, record, data, cancelled)
            except WorkflowCancelledError:
                record.cancel(at=self._clock())
                await self._registry.put(record)
                logger.warning(f"Workflow {workflow_id} cancelled during {stage.value}")
                return
            except StageFailure as exc:
                error = StageError(stage=stage, kind=exc.kind, message=str(exc))
                record.fail_stage(stage, error, at=self._clock())
                await self._registry.put(record)
                logger.warning(
                    f"Workflow {workflow_id} failed at {stage.value}: {exc.kind}: {exc}"
                )
                return

            if stage == StageName.UPLOAD:
                record.input_file.content_ref = result.get("content_ref")

            next_stage = _next_stage(stage)
            now = self._clock()
            if next_stage is None:
                record.complete(stage, result, at=now)
                await self._registry.put(record)
                logger.info(f"Workflow {workflow_id} completed")
                return
            if cancelled.is_set():
                record.advance(stage, result, at=now)
                record.cancel(at=now)
                await self._registry.put(record)
                logger.warning(f"Workflow {workflow_id} cancelled after {stage.value}")
                return

            record.advance(stage, result, next_stage, at=now)
            await self._registry.put(record)
            stage = next_stage

    async def _record_abort(self, workflow_id: str, exc: Exception) -> None:
        try:
            record = await self._registry.get(workflow_id)
            if record.is_terminal:
                return
            record.interrupt(f"Workflow execution aborted: {exc}", at=self._clock())
            await self._registry.put(record)
        except Exception:
            logger.exception(f"Could not record failure of workflow {workflow_id}")
