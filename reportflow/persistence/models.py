"""Data models for persisted workflow state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..errors import INTERRUPTED, AlreadyTerminalError, InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageName(str, Enum):
    """Pipeline stages, declared in execution order."""

    UPLOAD = "upload"
    EXTERNAL_PROCESSING = "external_processing"
    SECONDARY_ANALYSIS = "secondary_analysis"
    PLAN_GENERATION = "plan_generation"
    FINALIZATION = "finalization"


STAGE_ORDER: tuple[StageName, ...] = tuple(StageName)


class SubjectRef(BaseModel):
    """Patient and clinic the workflow belongs to."""

    patient_id: str
    clinic_id: str
    patient_name: Optional[str] = None
    age: Optional[int] = None


class InputFile(BaseModel):
    name: str
    size: int
    content_ref: Optional[str] = None


class StageError(BaseModel):
    """Failure attributed to exactly one stage and one error kind."""

    stage: StageName
    kind: str
    message: str


class StageState(BaseModel):
    name: StageName
    status: StageStatus = StageStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[StageError] = None
    result: Optional[dict[str, Any]] = None


def _initial_stages() -> list[StageState]:
    return [StageState(name=name) for name in STAGE_ORDER]


class WorkflowRecord(BaseModel):
    """Full orchestration state of one workflow.

    All mutation goes through the transition methods below, which reject
    any change once the workflow is terminal.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject: SubjectRef
    input_file: InputFile
    overall_status: WorkflowStatus = WorkflowStatus.CREATED
    stages: list[StageState] = Field(default_factory=_initial_stages)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    cancel_requested_at: Optional[datetime] = None
    failure_reason: Optional[StageError] = None
    final_result: Optional[dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Queries
    @property
    def is_terminal(self) -> bool:
        return self.overall_status in TERMINAL_STATUSES

    def stage(self, name: StageName) -> StageState:
        for state in self.stages:
            if state.name == name:
                return state
        raise KeyError(name)

    def current_stage(self) -> Optional[StageState]:
        """Return the running stage, if any."""
        return next(
            (s for s in self.stages if s.status == StageStatus.RUNNING), None
        )

    def failed_stage(self) -> Optional[StageState]:
        return next((s for s in self.stages if s.status == StageStatus.FAILED), None)

    def results(self) -> dict[str, dict[str, Any]]:
        """Results of completed stages keyed by stage name."""
        return {
            s.name.value: s.result
            for s in self.stages
            if s.status == StageStatus.COMPLETED and s.result is not None
        }

    def snapshot(self) -> "WorkflowRecord":
        return self.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Transitions
    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise AlreadyTerminalError(self.id, self.overall_status.value)

    def _running(self, name: StageName) -> StageState:
        state = self.stage(name)
        if state.status != StageStatus.RUNNING:
            raise InvalidTransitionError(
                f"Stage {name.value} of workflow {self.id} is {state.status.value}, not running"
            )
        return state

    def begin_stage(self, name: StageName, at: Optional[datetime] = None) -> None:
        """Mark ``name`` running; every earlier stage must be completed."""
        self._ensure_mutable()
        at = at or utcnow()
        index = STAGE_ORDER.index(name)
        if any(s.status != StageStatus.COMPLETED for s in self.stages[:index]):
            raise InvalidTransitionError(
                f"Cannot begin {name.value} of workflow {self.id} before earlier stages complete"
            )
        state = self.stages[index]
        if state.status != StageStatus.PENDING:
            raise InvalidTransitionError(
                f"Stage {name.value} of workflow {self.id} is already {state.status.value}"
            )
        state.status = StageStatus.RUNNING
        state.started_at = at
        if self.overall_status == WorkflowStatus.CREATED:
            self.overall_status = WorkflowStatus.RUNNING
            self.started_at = at

    def advance(
        self,
        name: StageName,
        result: dict[str, Any],
        next_name: Optional[StageName] = None,
        at: Optional[datetime] = None,
    ) -> None:
        """Complete ``name`` and, in the same mutation, begin ``next_name``."""
        self._ensure_mutable()
        at = at or utcnow()
        state = self._running(name)
        state.status = StageStatus.COMPLETED
        state.completed_at = at
        state.result = result
        if next_name is not None:
            self.begin_stage(next_name, at=at)

    def complete(
        self, name: StageName, final_result: dict[str, Any], at: Optional[datetime] = None
    ) -> None:
        """Complete the last stage and the workflow with ``final_result``."""
        self.advance(name, final_result, at=at)
        if any(s.status != StageStatus.COMPLETED for s in self.stages):
            raise InvalidTransitionError(
                f"Workflow {self.id} cannot complete with unfinished stages"
            )
        self.overall_status = WorkflowStatus.COMPLETED
        self.final_result = final_result
        self.completed_at = self.stage(name).completed_at

    def fail_stage(
        self, name: StageName, error: StageError, at: Optional[datetime] = None
    ) -> None:
        self._ensure_mutable()
        at = at or utcnow()
        state = self._running(name)
        state.status = StageStatus.FAILED
        state.completed_at = at
        state.error = error
        self.overall_status = WorkflowStatus.FAILED
        self.failure_reason = error
        self.completed_at = at

    def cancel(self, at: Optional[datetime] = None) -> None:
        """Stop the workflow; unfinished stages are skipped, results kept."""
        self._ensure_mutable()
        at = at or utcnow()
        for state in self.stages:
            if state.status == StageStatus.RUNNING:
                state.status = StageStatus.SKIPPED
                state.completed_at = at
            elif state.status == StageStatus.PENDING:
                state.status = StageStatus.SKIPPED
        self.overall_status = WorkflowStatus.CANCELLED
        self.cancel_requested_at = self.cancel_requested_at or at
        self.completed_at = at

    def interrupt(self, message: str, at: Optional[datetime] = None) -> None:
        """Fail a workflow whose execution was lost, e.g. by a restart."""
        self._ensure_mutable()
        at = at or utcnow()
        state = self.current_stage()
        if state is None:
            state = next(s for s in self.stages if s.status == StageStatus.PENDING)
            self.begin_stage(state.name, at=at)
        self.fail_stage(
            state.name,
            StageError(stage=state.name, kind=INTERRUPTED, message=message),
            at=at,
        )
