"""Command line interface for operating reportflow workflows."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from reportflow import WorkflowOrchestrator, get_store
from reportflow.config import load_config
from reportflow.errors import ReportFlowError
from reportflow.persistence.models import WorkflowRecord, WorkflowStatus

T = TypeVar("T")

app = typer.Typer(help="CLI for reportflow workflows")

workflow_app = typer.Typer(help="Commands for managing workflows")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """reportflow CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _orchestrator() -> WorkflowOrchestrator:
    return WorkflowOrchestrator.from_config(load_config(), store=get_store())


async def _with_orchestrator(action: Callable[[WorkflowOrchestrator], Awaitable[T]]) -> T:
    orchestrator = _orchestrator()
    try:
        return await action(orchestrator)
    finally:
        await orchestrator.close()


def _echo_record(wf: WorkflowRecord) -> None:
    typer.echo(f"Workflow {wf.id}: {wf.overall_status.value}")
    typer.echo(f"Patient: {wf.subject.patient_id}  Clinic: {wf.subject.clinic_id}")
    typer.echo(
        f"File: {wf.input_file.name} ({wf.input_file.size} bytes)"
        + (f" -> {wf.input_file.content_ref}" if wf.input_file.content_ref else "")
    )
    if wf.failure_reason:
        reason = wf.failure_reason
        typer.echo(f"Failure: {reason.stage.value}: {reason.kind}: {reason.message}")
    for stage in wf.stages:
        typer.echo(
            f"- {stage.name.value}: {stage.status.value}"
            + (
                f" ({stage.started_at} -> {stage.completed_at})"
                if stage.started_at or stage.completed_at
                else ""
            )
        )
        if stage.error:
            typer.echo(f"    {stage.error.kind}: {stage.error.message}")
    if wf.final_result:
        processing = wf.final_result.get("processing", {})
        typer.echo(f"Quality score: {processing.get('quality_score')}")


@workflow_app.command("list")
def workflow_list(
    clinic: Optional[str] = typer.Option(None, help="Only show workflows of this clinic"),
) -> None:
    """
    List workflows with their current status, newest first.

    Example:
        reportflow workflow list --clinic C1
        # Output: 3f2c...    running    C1    recording.edf
    """
    store = get_store()
    workflows = asyncio.run(store.list_records(clinic))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(
            f"{wf.id}\t{wf.overall_status.value}\t{wf.subject.clinic_id}\t{wf.input_file.name}"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """
    Show the per-stage breakdown of one workflow.

    Displays overall status, the failing stage and error kind if any, and
    every stage with its timestamps.
    """
    store = get_store()
    wf = asyncio.run(store.load(workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    _echo_record(wf)


@workflow_app.command("submit")
def workflow_submit(
    path: Path,
    patient: str = typer.Option(..., help="Patient identifier"),
    clinic: str = typer.Option(..., help="Clinic identifier"),
    patient_name: Optional[str] = typer.Option(None, help="Patient display name"),
) -> None:
    """
    Run a recording through the full pipeline and wait for the result.

    Uses the configured store, object storage and external processor.

    Example:
        reportflow workflow submit ./recording.edf --patient P1 --clinic C1
    """
    if not path.is_file():
        typer.secho(f"File not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _run() -> WorkflowRecord:
        orchestrator = _orchestrator()
        try:
            workflow_id = await orchestrator.start(
                path.read_bytes(),
                path.name,
                {"patient_id": patient, "clinic_id": clinic, "patient_name": patient_name},
            )
            typer.echo(f"Workflow ID: {workflow_id}")
            return await orchestrator.wait(workflow_id)
        finally:
            await orchestrator.close()

    try:
        wf = asyncio.run(_run())
    except ReportFlowError as exc:
        typer.secho(f"{exc.kind}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _echo_record(wf)
    if wf.overall_status != WorkflowStatus.COMPLETED:
        raise typer.Exit(code=1)


@workflow_app.command("cancel")
def workflow_cancel(workflow_id: str) -> None:
    """Cancel a workflow that has not reached a terminal state."""
    try:
        asyncio.run(_with_orchestrator(lambda o: o.cancel(workflow_id)))
    except ReportFlowError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1)
    typer.echo(f"Cancellation requested for {workflow_id}")


@workflow_app.command("reconcile")
def workflow_reconcile(
    older_than: Optional[float] = typer.Option(
        None, help="Age in seconds after which an unfinished workflow counts as interrupted"
    ),
) -> None:
    """Mark workflows left unfinished by a previous process as failed."""
    reconciled = asyncio.run(_with_orchestrator(lambda o: o.reconcile(older_than)))
    if not reconciled:
        typer.echo("No interrupted workflows found")
        return
    for workflow_id in reconciled:
        typer.echo(f"{workflow_id}\tinterrupted")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
