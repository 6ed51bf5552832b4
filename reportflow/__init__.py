"""reportflow: durable orchestration of biosignal report processing."""

from .errors import (
    AlreadyTerminalError,
    InvalidInputError,
    ReportFlowError,
    StageFailure,
    WorkflowNotFoundError,
)
from .orchestrator import WorkflowOrchestrator
from .persistence import (
    STAGE_ORDER,
    StageName,
    StageStatus,
    SubjectRef,
    WorkflowRecord,
    WorkflowStatus,
    get_store,
)
from .registry import WorkflowRegistry
from .steps import StepExecutor

__version__ = "0.1.0"
__all__ = [
    "AlreadyTerminalError",
    "InvalidInputError",
    "ReportFlowError",
    "StageFailure",
    "WorkflowNotFoundError",
    "WorkflowOrchestrator",
    "STAGE_ORDER",
    "StageName",
    "StageStatus",
    "SubjectRef",
    "WorkflowRecord",
    "WorkflowStatus",
    "get_store",
    "WorkflowRegistry",
    "StepExecutor",
]
