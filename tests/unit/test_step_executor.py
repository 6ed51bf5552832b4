from datetime import datetime, timedelta, timezone

import pytest

from reportflow.collaborators import (
    InMemoryCompletionListener,
    InMemoryJobClient,
    InMemoryObjectStore,
    InMemoryUsageNotifier,
)
from reportflow.config import PollingConfig, ScoringConfig
from reportflow.errors import (
    AnalysisError,
    ExternalProcessingError,
    FinalizationError,
    StorageError,
)
from reportflow.persistence import (
    STAGE_ORDER,
    InputFile,
    StageName,
    StageStatus,
    SubjectRef,
    WorkflowRecord,
)
from reportflow.steps import StepExecutor, calculate_quality_score

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
FAST = PollingConfig(interval_seconds=0.001, max_wait_seconds=1.0)


def _record() -> WorkflowRecord:
    return WorkflowRecord(
        id="wf-1",
        subject=SubjectRef(patient_id="P1", clinic_id="C1", age=40),
        input_file=InputFile(name="recording.edf", size=4),
        created_at=T0,
    )


async def _run_through(executor, record, last: StageName, data=b"edf!"):
    """Run stages in order up to and including ``last``."""
    stage = STAGE_ORDER[0]
    record.begin_stage(stage)
    while True:
        result = await executor.run(stage, record, data)
        if stage == last:
            return result
        next_stage = STAGE_ORDER[STAGE_ORDER.index(stage) + 1]
        record.advance(stage, result, next_stage)
        stage = next_stage


def test_object_key_is_scoped_to_workflow():
    executor = StepExecutor(InMemoryObjectStore(), InMemoryJobClient(), key_prefix="edf-files/")

    assert executor.object_key(_record()) == "edf-files/C1/P1/wf-1/recording.edf"


@pytest.mark.asyncio
async def test_upload_stores_bytes_and_returns_reference():
    object_store = InMemoryObjectStore()
    executor = StepExecutor(object_store, InMemoryJobClient(), clock=lambda: T0)

    result = await executor.run(StageName.UPLOAD, _record(), b"edf!")

    assert result["content_ref"] == "memory://edf-files/C1/P1/wf-1/recording.edf"
    assert result["file_size"] == 4
    assert result["uploaded_at"] == T0.isoformat()
    assert object_store.objects == {"edf-files/C1/P1/wf-1/recording.edf": b"edf!"}


@pytest.mark.asyncio
async def test_upload_failure_raises_storage_error():
    executor = StepExecutor(
        InMemoryObjectStore(fail_with=PermissionError("denied")), InMemoryJobClient()
    )

    with pytest.raises(StorageError, match="denied"):
        await executor.run(StageName.UPLOAD, _record(), b"edf!")


@pytest.mark.asyncio
async def test_external_processing_submits_reference_and_fetches_report():
    job_client = InMemoryJobClient(polls_until_done=3)
    executor = StepExecutor(InMemoryObjectStore(), job_client, polling=FAST)
    record = _record()

    result = await _run_through(executor, record, StageName.EXTERNAL_PROCESSING)

    reference, metadata = job_client.submissions[0]
    assert reference == record.stage(StageName.UPLOAD).result["content_ref"]
    assert metadata["workflow_id"] == "wf-1"
    assert metadata["clinic_id"] == "C1"
    assert result["job_id"].startswith("job_")
    assert result["report"]["findings"]["dominantFrequency"] == "10.2 Hz"


@pytest.mark.asyncio
async def test_external_submission_error_is_processing_error():
    class RejectingClient(InMemoryJobClient):
        async def submit(self, reference, metadata):
            raise ConnectionError("processor unreachable")

    executor = StepExecutor(InMemoryObjectStore(), RejectingClient(), polling=FAST)

    with pytest.raises(ExternalProcessingError, match="processor unreachable"):
        await _run_through(executor, _record(), StageName.EXTERNAL_PROCESSING)


@pytest.mark.asyncio
async def test_unexpected_analyzer_error_maps_to_analysis_error():
    def analyzer(report, subject):
        raise ZeroDivisionError("division by zero")

    executor = StepExecutor(
        InMemoryObjectStore(), InMemoryJobClient(), polling=FAST, analyzer=analyzer
    )

    with pytest.raises(AnalysisError, match="division by zero"):
        await _run_through(executor, _record(), StageName.SECONDARY_ANALYSIS)


@pytest.mark.asyncio
async def test_plan_generation_links_analysis_report():
    executor = StepExecutor(InMemoryObjectStore(), InMemoryJobClient(), polling=FAST)
    record = _record()

    result = await _run_through(executor, record, StageName.PLAN_GENERATION)

    analysis = record.stage(StageName.SECONDARY_ANALYSIS).result
    assert analysis["report_id"].startswith("analysis_")
    assert result["analysis_report_id"] == analysis["report_id"]
    assert result["care_plan"]["risk_level"] == "Low"
    assert result["care_plan"]["patient_id"] == "P1"


@pytest.mark.asyncio
async def test_finalization_consolidates_results_and_notifies():
    notifier = InMemoryUsageNotifier()
    listener = InMemoryCompletionListener()
    executor = StepExecutor(
        InMemoryObjectStore(),
        InMemoryJobClient(),
        notifier,
        [listener],
        polling=FAST,
        clock=lambda: T0 + timedelta(minutes=2),
    )
    record = _record()

    final = await _run_through(executor, record, StageName.FINALIZATION)

    assert final["workflow_id"] == "wf-1"
    assert final["report_type"] == "complete_eeg_analysis"
    assert final["original_file"]["file_name"] == "recording.edf"
    assert final["processing_report"]["report_type"] == "qEEG Analysis"
    assert final["care_plan"]["risk_level"] == "Low"
    assert final["processing"] == {
        "total_processing_seconds": 120,
        "completed_stages": 5,
        "quality_score": 100,
    }
    assert notifier.counts == {"C1": 1}
    assert listener.completed[0][0].patient_id == "P1"


@pytest.mark.asyncio
async def test_finalization_without_earlier_results_fails():
    executor = StepExecutor(InMemoryObjectStore(), InMemoryJobClient())
    record = _record()

    with pytest.raises(FinalizationError):
        await executor.run(StageName.FINALIZATION, record, b"")


def test_quality_score_penalises_slow_processing():
    record = _record()

    assert calculate_quality_score(record, T0 + timedelta(seconds=600)) == 100
    assert calculate_quality_score(record, T0 + timedelta(seconds=601)) == 90


def test_quality_score_penalises_failed_stages_and_floors_at_zero():
    record = _record()
    record.stages[0].status = StageStatus.FAILED

    assert calculate_quality_score(record, T0) == 80
    assert calculate_quality_score(record, T0 + timedelta(hours=1)) == 70

    harsh = ScoringConfig(failed_stage_penalty=200)
    assert calculate_quality_score(record, T0, harsh) == 0
