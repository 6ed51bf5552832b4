"""Stage transitions of the workflow record."""

from datetime import datetime, timedelta, timezone

import pytest

from reportflow.errors import AlreadyTerminalError, InvalidTransitionError
from reportflow.persistence import (
    STAGE_ORDER,
    InputFile,
    StageError,
    StageName,
    StageStatus,
    SubjectRef,
    WorkflowRecord,
    WorkflowStatus,
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record() -> WorkflowRecord:
    return WorkflowRecord(
        subject=SubjectRef(patient_id="P1", clinic_id="C1"),
        input_file=InputFile(name="recording.edf", size=2048),
        created_at=T0,
    )


def test_new_record_has_all_stages_pending():
    record = _record()

    assert record.overall_status == WorkflowStatus.CREATED
    assert [s.name for s in record.stages] == list(STAGE_ORDER)
    assert all(s.status == StageStatus.PENDING for s in record.stages)
    assert record.current_stage() is None
    assert not record.is_terminal


def test_stage_order_is_fixed():
    assert [s.value for s in STAGE_ORDER] == [
        "upload",
        "external_processing",
        "secondary_analysis",
        "plan_generation",
        "finalization",
    ]


def test_begin_first_stage_starts_workflow():
    record = _record()
    record.begin_stage(StageName.UPLOAD, at=T0)

    assert record.overall_status == WorkflowStatus.RUNNING
    assert record.started_at == T0
    assert record.current_stage().name == StageName.UPLOAD


def test_stages_cannot_start_out_of_order():
    record = _record()

    with pytest.raises(InvalidTransitionError):
        record.begin_stage(StageName.SECONDARY_ANALYSIS)


def test_advance_completes_and_begins_in_one_step():
    record = _record()
    record.begin_stage(StageName.UPLOAD, at=T0)
    later = T0 + timedelta(seconds=3)
    record.advance(StageName.UPLOAD, {"key": "k"}, StageName.EXTERNAL_PROCESSING, at=later)

    upload = record.stage(StageName.UPLOAD)
    assert upload.status == StageStatus.COMPLETED
    assert upload.completed_at == later
    assert upload.result == {"key": "k"}
    assert record.current_stage().name == StageName.EXTERNAL_PROCESSING
    assert record.current_stage().started_at == later
    assert record.results() == {"upload": {"key": "k"}}


def test_advance_requires_running_stage():
    record = _record()

    with pytest.raises(InvalidTransitionError):
        record.advance(StageName.UPLOAD, {})


def test_complete_sets_final_result():
    record = _record()
    stage = STAGE_ORDER[0]
    record.begin_stage(stage)
    for next_stage in STAGE_ORDER[1:]:
        record.advance(stage, {"stage": stage.value}, next_stage)
        stage = next_stage
    record.complete(stage, {"report_id": "r1"})

    assert record.overall_status == WorkflowStatus.COMPLETED
    assert record.final_result == {"report_id": "r1"}
    assert record.completed_at == record.stage(StageName.FINALIZATION).completed_at
    assert record.is_terminal


def test_fail_stage_records_error_and_leaves_later_stages_pending():
    record = _record()
    record.begin_stage(StageName.UPLOAD)
    record.advance(StageName.UPLOAD, {}, StageName.EXTERNAL_PROCESSING)
    error = StageError(
        stage=StageName.EXTERNAL_PROCESSING, kind="ExternalTimeout", message="too slow"
    )
    record.fail_stage(StageName.EXTERNAL_PROCESSING, error)

    assert record.overall_status == WorkflowStatus.FAILED
    assert record.failure_reason == error
    assert record.failed_stage().name == StageName.EXTERNAL_PROCESSING
    assert record.stage(StageName.UPLOAD).status == StageStatus.COMPLETED
    assert all(
        record.stage(n).status == StageStatus.PENDING for n in STAGE_ORDER[2:]
    )


def test_cancel_skips_unfinished_stages_and_keeps_results():
    record = _record()
    record.begin_stage(StageName.UPLOAD)
    record.advance(StageName.UPLOAD, {"key": "k"}, StageName.EXTERNAL_PROCESSING)
    record.cancel(at=T0)

    assert record.overall_status == WorkflowStatus.CANCELLED
    assert record.cancel_requested_at == T0
    assert record.stage(StageName.UPLOAD).result == {"key": "k"}
    assert record.stage(StageName.EXTERNAL_PROCESSING).status == StageStatus.SKIPPED
    assert record.stage(StageName.EXTERNAL_PROCESSING).completed_at == T0
    assert record.stage(StageName.FINALIZATION).status == StageStatus.SKIPPED


def test_terminal_record_rejects_every_transition():
    record = _record()
    record.cancel()
    before = record.snapshot()

    with pytest.raises(AlreadyTerminalError):
        record.cancel()
    with pytest.raises(AlreadyTerminalError):
        record.begin_stage(StageName.UPLOAD)
    with pytest.raises(AlreadyTerminalError):
        record.interrupt("lost")
    assert record == before


def test_interrupt_fails_running_stage():
    record = _record()
    record.begin_stage(StageName.UPLOAD)
    record.advance(StageName.UPLOAD, {}, StageName.EXTERNAL_PROCESSING)
    record.interrupt("process restarted")

    assert record.overall_status == WorkflowStatus.FAILED
    assert record.failure_reason.stage == StageName.EXTERNAL_PROCESSING
    assert record.failure_reason.kind == "Interrupted"


def test_interrupt_before_first_stage_fails_upload():
    record = _record()
    record.interrupt("process restarted")

    assert record.failure_reason.stage == StageName.UPLOAD
    assert record.stage(StageName.UPLOAD).status == StageStatus.FAILED


def test_snapshot_is_deep_copy():
    record = _record()
    copy = record.snapshot()
    copy.subject.patient_id = "other"
    copy.stages[0].status = StageStatus.RUNNING

    assert record.subject.patient_id == "P1"
    assert record.stages[0].status == StageStatus.PENDING
