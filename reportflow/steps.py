"""Stage actions for the report-processing pipeline."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from .analysis import analyze_report, generate_care_plan
from .collaborators.base import (
    CompletionListener,
    ExternalJobClient,
    JobHandle,
    JobStatus,
    ObjectStore,
    UsageNotifier,
)
from .config import PollingConfig, ScoringConfig
from .errors import (
    AnalysisError,
    ExternalProcessingError,
    FinalizationError,
    PlanGenerationError,
    StageFailure,
    StorageError,
    WorkflowCancelledError,
)
from .persistence.models import (
    StageName,
    StageStatus,
    WorkflowRecord,
    utcnow,
)
from .utils.polling import wait_for_job

logger = logging.getLogger(__name__)

# Error raised for an unexpected exception escaping each stage.
STAGE_ERRORS: Dict[StageName, type[StageFailure]] = {
    StageName.UPLOAD: StorageError,
    StageName.EXTERNAL_PROCESSING: ExternalProcessingError,
    StageName.SECONDARY_ANALYSIS: AnalysisError,
    StageName.PLAN_GENERATION: PlanGenerationError,
    StageName.FINALIZATION: FinalizationError,
}


def calculate_processing_seconds(record: WorkflowRecord, now: datetime) -> int:
    return max(0, round((now - record.created_at).total_seconds()))


def calculate_quality_score(
    record: WorkflowRecord, now: datetime, scoring: Optional[ScoringConfig] = None
) -> int:
    """Score a finished pipeline run out of 100.

    Failed stages are penalised, but a failure ends the workflow before
    finalization, so in practice only the slow-processing penalty applies.
    """
    scoring = scoring or ScoringConfig()
    score = 100
    failed = sum(1 for s in record.stages if s.status == StageStatus.FAILED)
    score -= scoring.failed_stage_penalty * failed
    if calculate_processing_seconds(record, now) > scoring.slow_processing_threshold_seconds:
        score -= scoring.slow_processing_penalty
    return max(0, score)


class StepExecutor:
    """Runs one pipeline stage at a time against the external collaborators.

    Every stage either returns its result payload or raises a
    ``StageFailure`` subclass; ``WorkflowCancelledError`` is raised when
    cancellation is observed while waiting on the external job.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        job_client: ExternalJobClient,
        usage_notifier: Optional[UsageNotifier] = None,
        listeners: Iterable[CompletionListener] = (),
        *,
        polling: Optional[PollingConfig] = None,
        scoring: Optional[ScoringConfig] = None,
        key_prefix: str = "edf-files",
        analyzer: Callable[..., Dict[str, Any]] = analyze_report,
        planner: Callable[..., Dict[str, Any]] = generate_care_plan,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._object_store = object_store
        self._job_client = job_client
        self._usage_notifier = usage_notifier
        self._listeners = list(listeners)
        self._polling = polling or PollingConfig()
        self._scoring = scoring or ScoringConfig()
        self._key_prefix = key_prefix.rstrip("/")
        self._analyzer = analyzer
        self._planner = planner
        self._clock = clock

    async def aclose(self) -> None:
        await self._job_client.aclose()

    async def run(
        self,
        stage: StageName,
        record: WorkflowRecord,
        data: bytes,
        cancelled: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Execute ``stage`` for ``record`` and return its result payload."""
        try:
            if stage == StageName.UPLOAD:
                return await self.upload(record, data)
            if stage == StageName.EXTERNAL_PROCESSING:
                return await self.external_processing(record, cancelled)
            if stage == StageName.SECONDARY_ANALYSIS:
                return self.secondary_analysis(record)
            if stage == StageName.PLAN_GENERATION:
                return self.plan_generation(record)
            return await self.finalization(record)
        except (StageFailure, WorkflowCancelledError):
            raise
        except Exception as exc:
            logger.exception(f"Unexpected error in {stage.value} for workflow {record.id}")
            raise STAGE_ERRORS[stage](str(exc) or type(exc).__name__) from exc

    # ------------------------------------------------------------------
    # Stage 1
    def object_key(self, record: WorkflowRecord) -> str:
        subject = record.subject
        return (
            f"{self._key_prefix}/{subject.clinic_id}/{subject.patient_id}/"
            f"{record.id}/{record.input_file.name}"
        )

    async def upload(self, record: WorkflowRecord, data: bytes) -> Dict[str, Any]:
        key = self.object_key(record)
        try:
            reference = await self._object_store.put(data, key)
        except Exception as exc:
            raise StorageError(f"Upload of {record.input_file.name} failed: {exc}") from exc
        return {
            "key": key,
            "content_ref": reference,
            "file_name": record.input_file.name,
            "file_size": record.input_file.size,
            "uploaded_at": self._clock().isoformat(),
        }

    # ------------------------------------------------------------------
    # Stage 2
    async def external_processing(
        self, record: WorkflowRecord, cancelled: Optional[asyncio.Event] = None
    ) -> Dict[str, Any]:
        upload = record.stage(StageName.UPLOAD).result or {}
        metadata = {
            "workflow_id": record.id,
            "patient_id": record.subject.patient_id,
            "patient_name": record.subject.patient_name,
            "clinic_id": record.subject.clinic_id,
            "file_name": record.input_file.name,
        }
        try:
            handle = await self._job_client.submit(upload["content_ref"], metadata)
        except Exception as exc:
            raise ExternalProcessingError(f"Job submission failed: {exc}") from exc
        logger.info(f"Workflow {record.id} submitted external job {handle.job_id}")

        async def poll() -> JobStatus:
            try:
                return await self._job_client.poll(handle)
            except Exception as exc:
                raise ExternalProcessingError(f"Status check failed: {exc}") from exc

        try:
            status = await wait_for_job(
                poll,
                interval=self._polling.interval_seconds,
                max_wait=self._polling.max_wait_seconds,
                cancelled=cancelled,
            )
        except WorkflowCancelledError:
            await self._cancel_job(record, handle)
            raise

        report = status.result
        if report is None:
            try:
                report = await self._job_client.fetch_result(handle)
            except Exception as exc:
                raise ExternalProcessingError(f"Result download failed: {exc}") from exc
        return {"job_id": handle.job_id, "report": report}

    async def _cancel_job(self, record: WorkflowRecord, handle: JobHandle) -> None:
        try:
            await self._job_client.cancel(handle)
        except Exception as exc:
            logger.warning(
                f"Could not cancel external job {handle.job_id} for workflow {record.id}: {exc}"
            )

    # ------------------------------------------------------------------
    # Stages 3 and 4
    def secondary_analysis(self, record: WorkflowRecord) -> Dict[str, Any]:
        processing = record.stage(StageName.EXTERNAL_PROCESSING).result or {}
        analysis = self._analyzer(processing.get("report"), record.subject)
        return {"report_id": f"analysis_{uuid.uuid4().hex}", **analysis}

    def plan_generation(self, record: WorkflowRecord) -> Dict[str, Any]:
        analysis = record.stage(StageName.SECONDARY_ANALYSIS).result
        care_plan = self._planner(analysis, record.subject)
        return {
            "plan_id": f"careplan_{uuid.uuid4().hex}",
            "analysis_report_id": (analysis or {}).get("report_id"),
            "care_plan": care_plan,
            "created_at": self._clock().isoformat(),
        }

    # ------------------------------------------------------------------
    # Stage 5
    def build_final_result(self, record: WorkflowRecord, now: datetime) -> Dict[str, Any]:
        results = record.results()
        return {
            "report_id": f"report_{uuid.uuid4().hex}",
            "workflow_id": record.id,
            "report_type": "complete_eeg_analysis",
            "subject": record.subject.model_dump(mode="json"),
            "original_file": results[StageName.UPLOAD.value],
            "processing_report": results[StageName.EXTERNAL_PROCESSING.value]["report"],
            "analysis": results[StageName.SECONDARY_ANALYSIS.value],
            "care_plan": results[StageName.PLAN_GENERATION.value]["care_plan"],
            "processing": {
                "total_processing_seconds": calculate_processing_seconds(record, now),
                "completed_stages": len(record.stages),
                "quality_score": calculate_quality_score(record, now, self._scoring),
            },
            "created_at": now.isoformat(),
        }

    async def finalization(self, record: WorkflowRecord) -> Dict[str, Any]:
        try:
            final_result = self.build_final_result(record, self._clock())
        except KeyError as exc:
            raise FinalizationError(f"Missing result of stage {exc}") from exc
        await self._notify(record, final_result)
        return final_result

    async def _notify(self, record: WorkflowRecord, final_result: Dict[str, Any]) -> None:
        """Best-effort side effects; failures never fail the workflow."""
        clinic_id = record.subject.clinic_id
        if self._usage_notifier is not None:
            try:
                await self._usage_notifier.increment(clinic_id)
            except Exception as exc:
                logger.warning(
                    f"Usage update failed for clinic {clinic_id} (workflow {record.id}): {exc}"
                )
        for listener in self._listeners:
            try:
                await listener.workflow_completed(record.subject, final_result)
            except Exception as exc:
                logger.warning(
                    f"Completion listener {type(listener).__name__} failed for workflow {record.id}: {exc}"
                )
