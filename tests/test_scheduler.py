"""Tests for the resume sweep."""

from datetime import timedelta

import pytest

from careflow.contracts import ExecutionStatus, WorkflowStatus, utcnow
from careflow.errors import PersistenceError

TENANT = "clinic-1"
CONTEXT = {"patient_id": "p-001", "line_user_id": "U1234"}


def _text(value):
    return ("send_message", {"text": value})


async def _park(engine, build_workflow, steps):
    wf = await build_workflow(steps)
    result = await engine.execute(wf.id, CONTEXT, TENANT)
    assert result.status == ExecutionStatus.WAITING
    return wf, result


@pytest.mark.asyncio
async def test_sweep_ignores_executions_not_yet_due(engine, build_workflow, repository):
    _, parked = await _park(
        engine, build_workflow, [_text("a"), ("wait", {"duration_minutes": 60}), _text("b")]
    )

    report = await engine.sweep()

    assert report.resumed == 0
    row = await repository.get_execution(parked.execution_id, TENANT)
    assert row.status == ExecutionStatus.WAITING


@pytest.mark.asyncio
async def test_sweep_resumes_due_execution(engine, build_workflow, transport, repository):
    _, parked = await _park(
        engine, build_workflow, [_text("a"), ("wait", {"duration_minutes": 60}), _text("b")]
    )

    report = await engine.scheduler.sweep(now=utcnow() + timedelta(minutes=61))

    assert report.resumed == 1
    assert report.results[0].execution_id == parked.execution_id
    assert report.results[0].status == ExecutionStatus.COMPLETED
    assert report.results[0].steps_executed == 2
    assert transport.texts_for("U1234") == ["a", "b"]
    row = await repository.get_execution(parked.execution_id, TENANT)
    assert row.status == ExecutionStatus.COMPLETED
    assert row.resume_at is None
    assert row.version > 1


@pytest.mark.asyncio
async def test_zero_minute_wait_is_due_immediately(engine, build_workflow, transport):
    await _park(engine, build_workflow, [("wait", {"duration_minutes": 0}), _text("now")])

    report = await engine.scheduler.sweep(now=utcnow() + timedelta(seconds=1))

    assert report.resumed == 1
    assert transport.texts_for("U1234") == ["now"]


@pytest.mark.asyncio
async def test_resume_chains_through_multiple_waits(engine, build_workflow, transport, repository):
    _, parked = await _park(
        engine,
        build_workflow,
        [
            _text("one"),
            ("wait", {"duration_minutes": 10}),
            _text("two"),
            ("wait", {"duration_minutes": 5}),
            _text("three"),
        ],
    )
    start = utcnow()

    first = await engine.scheduler.sweep(now=start + timedelta(minutes=11))
    assert first.results[0].status == ExecutionStatus.WAITING
    assert first.results[0].steps_executed == 2
    row = await repository.get_execution(parked.execution_id, TENANT)
    assert row.current_step_index == 4

    second = await engine.scheduler.sweep(now=start + timedelta(minutes=30))
    assert second.results[0].status == ExecutionStatus.COMPLETED
    assert second.results[0].steps_executed == 3
    assert transport.texts_for("U1234") == ["one", "two", "three"]


@pytest.mark.asyncio
async def test_execution_resumes_only_once(engine, build_workflow, transport):
    await _park(engine, build_workflow, [("wait", {"duration_minutes": 1}), _text("once")])
    later = utcnow() + timedelta(minutes=5)

    first = await engine.scheduler.sweep(now=later)
    second = await engine.scheduler.sweep(now=later)

    assert first.resumed == 1
    assert second.resumed == 0
    assert transport.texts_for("U1234") == ["once"]


@pytest.mark.asyncio
async def test_claimed_execution_counts_as_lost_claim(
    engine, build_workflow, repository, transport, monkeypatch
):
    _, parked = await _park(
        engine, build_workflow, [("wait", {"duration_minutes": 1}), _text("x")]
    )
    later = utcnow() + timedelta(minutes=5)
    stale = await repository.list_waiting_executions(later)
    # another sweeper wins the claim after this one listed the row
    assert await repository.claim_execution(parked.execution_id, TENANT)
    assert not await repository.claim_execution(parked.execution_id, TENANT)

    async def _stale_listing(now, limit=100):
        return stale

    monkeypatch.setattr(repository, "list_waiting_executions", _stale_listing)
    report = await engine.scheduler.sweep(now=later)

    assert report.resumed == 0
    assert report.lost_claims == 1
    assert transport.sent == []


@pytest.mark.asyncio
async def test_deactivated_workflow_is_skipped_on_resume(
    engine, build_workflow, repository, transport
):
    wf, parked = await _park(
        engine, build_workflow, [_text("a"), ("wait", {"duration_minutes": 1}), _text("b")]
    )
    await repository.save_workflow(wf.model_copy(update={"status": WorkflowStatus.INACTIVE}))

    report = await engine.scheduler.sweep(now=utcnow() + timedelta(minutes=5))

    assert report.resumed == 0
    assert report.skipped == 1
    row = await repository.get_execution(parked.execution_id, TENANT)
    assert row.status == ExecutionStatus.SKIPPED
    assert row.error == "workflow deactivated before resume"
    assert transport.texts_for("U1234") == ["a"]


@pytest.mark.asyncio
async def test_listing_failure_propagates(engine, repository, monkeypatch):
    async def _broken(now, limit=100):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(repository, "list_waiting_executions", _broken)

    with pytest.raises(PersistenceError):
        await engine.sweep()


@pytest.mark.asyncio
async def test_run_loop_stops_after_lifespan(engine):
    sweeps = await engine.scheduler.run(interval=0.01, lifespan=0.05)

    assert sweeps >= 1


@pytest.mark.asyncio
async def test_resume_after_workflow_shrank_fails_execution(
    engine, build_workflow, repository, transport
):
    wf, parked = await _park(
        engine,
        build_workflow,
        [_text("a"), _text("b"), _text("c"), ("wait", {"duration_minutes": 1}), _text("e")],
    )
    # the workflow is edited down to its first step while the run waits
    for step in (await repository.list_steps(wf.id, TENANT))[1:]:
        await repository.save_step(step.model_copy(update={"workflow_id": "retired"}))

    report = await engine.scheduler.sweep(now=utcnow() + timedelta(minutes=5))

    [result] = report.results
    assert result.status == ExecutionStatus.FAILED
    assert result.steps_total == 1
    assert result.steps_executed <= result.steps_total
    row = await repository.get_execution(parked.execution_id, TENANT)
    assert row.status == ExecutionStatus.FAILED
    assert row.steps_total == 1
    assert row.steps_executed == 1
    assert row.resume_at is None
    assert "workflow changed while waiting" in row.error
    assert transport.texts_for("U1234") == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_sweep_continues_after_claim_error(
    engine, build_workflow, repository, transport, monkeypatch
):
    _, broken = await _park(engine, build_workflow, [("wait", {"duration_minutes": 1}), _text("x")])
    _, healthy = await _park(engine, build_workflow, [("wait", {"duration_minutes": 1}), _text("y")])
    claim = repository.claim_execution

    async def _flaky_claim(execution_id, tenant_id):
        if execution_id == broken.execution_id:
            raise PersistenceError("connection reset")
        return await claim(execution_id, tenant_id)

    monkeypatch.setattr(repository, "claim_execution", _flaky_claim)
    report = await engine.scheduler.sweep(now=utcnow() + timedelta(minutes=5))

    assert report.resumed == 1
    assert report.results[0].execution_id == healthy.execution_id
    assert transport.texts_for("U1234") == ["y"]
    row = await repository.get_execution(broken.execution_id, TENANT)
    assert row.status == ExecutionStatus.WAITING
