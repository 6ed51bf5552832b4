"""Error taxonomy for report-processing workflows."""

from __future__ import annotations

from typing import Optional


class ReportFlowError(Exception):
    """Base class for all reportflow errors.

    ``kind`` is the stable taxonomy name recorded in workflow snapshots.
    """

    kind: str = "ReportFlowError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(ReportFlowError):
    kind = "InvalidInput"


class WorkflowNotFoundError(ReportFlowError):
    kind = "NotFound"

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class AlreadyTerminalError(ReportFlowError):
    kind = "AlreadyTerminal"

    def __init__(self, workflow_id: str, status: str) -> None:
        super().__init__(f"Workflow {workflow_id} is already {status}")
        self.workflow_id = workflow_id
        self.status = status


class InvalidTransitionError(ReportFlowError):
    """Raised when a record is asked to move out of stage order."""

    kind = "InvalidTransition"


class StageFailure(ReportFlowError):
    """A failure that terminates the workflow at the stage that raised it."""

    kind = "StageFailure"


class StorageError(StageFailure):
    kind = "StorageError"


class ExternalTimeoutError(StageFailure):
    kind = "ExternalTimeout"

    def __init__(self, waited: float, job_id: Optional[str] = None) -> None:
        suffix = f" for job {job_id}" if job_id else ""
        super().__init__(f"External processing did not finish within {waited:g}s{suffix}")
        self.waited = waited
        self.job_id = job_id


class ExternalProcessingError(StageFailure):
    kind = "ExternalProcessingError"


class AnalysisError(StageFailure):
    kind = "AnalysisError"


class PlanGenerationError(StageFailure):
    kind = "PlanGenerationError"


class FinalizationError(StageFailure):
    kind = "FinalizationError"


class WorkflowCancelledError(ReportFlowError):
    """Raised inside a suspended stage once cancellation has been requested."""

    kind = "Cancelled"


INTERRUPTED = "Interrupted"


__all__ = [
    "ReportFlowError",
    "InvalidInputError",
    "WorkflowNotFoundError",
    "AlreadyTerminalError",
    "InvalidTransitionError",
    "StageFailure",
    "StorageError",
    "ExternalTimeoutError",
    "ExternalProcessingError",
    "AnalysisError",
    "PlanGenerationError",
    "FinalizationError",
    "WorkflowCancelledError",
    "INTERRUPTED",
]
