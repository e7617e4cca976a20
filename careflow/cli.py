"""Command line interface for firing triggers and running the resume sweep."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from careflow import build_engine, get_repository
from careflow.config import load_config
from careflow.contracts import ExecutionResult

app = typer.Typer(help="CLI for careflow workflow automation")

# Command groups
workflow_app = typer.Typer(help="Commands for inspecting workflows")
execution_app = typer.Typer(help="Commands for inspecting executions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for engine output"),
) -> None:
    """careflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _echo_result(result: ExecutionResult) -> None:
    line = (
        f"{result.execution_id or '-'}\t{result.status.value}\t"
        f"{result.steps_executed}/{result.steps_total}"
    )
    if result.error:
        line += f"\t{result.error}"
    typer.echo(line)


@app.command("fire")
def fire(
    trigger_type: str,
    tenant: str = typer.Option(..., help="Tenant the event belongs to"),
    context: str = typer.Option("{}", help="Trigger context as a JSON object"),
) -> None:
    """
    Fire a trigger event and run every matching workflow.

    Prints one line per started workflow: execution id, status, executed/total
    steps and the last error if any.

    Example:
        careflow fire reservation_completed --tenant clinic-1 \\
            --context '{"patient_id": "p1", "line_user_id": "U123"}'
    """
    try:
        payload = json.loads(context)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid context JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(payload, dict):
        typer.secho("Context must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    engine = build_engine()
    results = asyncio.run(engine.fire_trigger(trigger_type, payload, tenant))
    if not results:
        typer.echo("No workflows matched")
        return
    for result in results:
        _echo_result(result)


@app.command("sweep")
def sweep(
    loop: bool = typer.Option(False, "--loop", help="Keep sweeping every interval"),
    interval: Optional[float] = typer.Option(
        None, help="Seconds between sweeps (default: engine.sweep_interval)"
    ),
    lifespan: Optional[float] = typer.Option(
        None, help="Stop looping after this many seconds"
    ),
) -> None:
    """
    Resume executions whose wait has elapsed.

    Without ``--loop`` a single sweep runs and its counts are printed. With
    ``--loop`` the sweep repeats until stopped or ``--lifespan`` expires.

    Example:
        careflow sweep
        careflow sweep --loop --interval 30 --lifespan 3600
    """
    engine = build_engine()
    if loop:
        every = interval or load_config().engine.sweep_interval
        typer.echo(f"Sweeping every {every:g}s")
        sweeps = asyncio.run(engine.scheduler.run(every, lifespan=lifespan))
        typer.echo(f"Completed {sweeps} sweep(s)")
        return

    report = asyncio.run(engine.sweep())
    typer.echo(
        f"resumed={report.resumed} skipped={report.skipped} lost_claims={report.lost_claims}"
    )
    for result in report.results:
        _echo_result(result)


@workflow_app.command("list")
def workflow_list(
    tenant: str = typer.Option(..., help="Tenant to list workflows for"),
) -> None:
    """List a tenant's workflows with their status and trigger."""
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows(tenant))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.status.value}\t{wf.trigger_type}\t{wf.name}")


@workflow_app.command("show")
def workflow_show(
    workflow_id: str,
    tenant: str = typer.Option(..., help="Tenant owning the workflow"),
) -> None:
    """
    Show a workflow, its trigger filter and its ordered steps.

    Example:
        careflow workflow show 3f0c... --tenant clinic-1
        # Output: Workflow 3f0c...: active
        #         Trigger: reservation_completed {"menu_id": 3}
        #         1. send_message {"text": "Thanks {name}"}
        #         2. wait {"duration_minutes": 1440}
    """
    repo = get_repository()
    wf = asyncio.run(repo.get_workflow(workflow_id, tenant))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    steps = asyncio.run(repo.list_steps(workflow_id, tenant))
    typer.echo(f"Workflow {wf.id}: {wf.status.value}")
    if wf.name:
        typer.echo(f"Name: {wf.name}")
    trigger = wf.trigger_type
    if wf.trigger_config:
        trigger += f" {json.dumps(wf.trigger_config)}"
    typer.echo(f"Trigger: {trigger}")
    for number, step in enumerate(steps, start=1):
        typer.echo(f"{number}. {step.step_type} {json.dumps(step.config)}")


@execution_app.command("list")
def execution_list(
    tenant: str = typer.Option(..., help="Tenant to list executions for"),
    workflow: Optional[str] = typer.Option(None, help="Only executions of this workflow"),
) -> None:
    """List a tenant's executions, newest first."""
    repo = get_repository()
    executions = asyncio.run(repo.list_executions(tenant, workflow_id=workflow))
    if not executions:
        typer.echo("No executions found")
        return
    for ex in executions:
        typer.echo(
            f"{ex.id}\t{ex.workflow_id}\t{ex.status.value}\t"
            f"{ex.steps_executed}/{ex.steps_total}"
        )


@execution_app.command("show")
def execution_show(
    execution_id: str,
    tenant: str = typer.Option(..., help="Tenant owning the execution"),
) -> None:
    """Show one execution's progress, schedule and last error."""
    repo = get_repository()
    ex = asyncio.run(repo.get_execution(execution_id, tenant))
    if ex is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    typer.echo(f"Execution {ex.id}: {ex.status.value}")
    typer.echo(f"Workflow: {ex.workflow_id}")
    if ex.patient_id:
        typer.echo(f"Patient: {ex.patient_id}")
    typer.echo(f"Progress: step {ex.current_step_index}/{ex.steps_total}, executed {ex.steps_executed}")
    if ex.resume_at:
        typer.echo(f"Resumes at: {ex.resume_at.isoformat()}")
    if ex.error:
        typer.echo(f"Error: {ex.error}")
    typer.echo(f"Started: {ex.started_at.isoformat()}")
    if ex.completed_at:
        typer.echo(f"Completed: {ex.completed_at.isoformat()}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
