"""Tests for the execution runner."""

import asyncio
from datetime import timedelta

import pytest

from careflow.contracts import ExecutionStatus, SendResult, WorkflowStatus, utcnow
from careflow.errors import PersistenceError
from careflow.persistence import InMemoryWorkflowRepository
from careflow.persistence.models import Workflow, WorkflowStep
from careflow.runner import ExecutionRunner
from careflow.transports.base import BaseTransport

TENANT = "clinic-1"
CONTEXT = {"patient_id": "p-001", "line_user_id": "U1234"}


def _text(value):
    return ("send_message", {"message_type": "text", "text": value})


@pytest.mark.asyncio
async def test_scenario_a_two_messages_complete(engine, build_workflow, transport, repository):
    wf = await build_workflow([_text("hello"), _text("world")])

    result = await engine.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.COMPLETED
    assert result.steps_executed == 2
    assert result.steps_total == 2
    assert result.error is None
    assert transport.texts_for("U1234") == ["hello", "world"]

    row = await repository.get_execution(result.execution_id, TENANT)
    assert row.status == ExecutionStatus.COMPLETED
    assert row.patient_id == "p-001"
    assert row.current_step_index == 2
    assert row.completed_at is not None


@pytest.mark.asyncio
async def test_scenario_b_wait_parks_execution(engine, build_workflow, transport, repository):
    wf = await build_workflow(
        [_text("before"), ("wait", {"duration_minutes": 60}), _text("after")]
    )
    invoked_at = utcnow()

    result = await engine.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.WAITING
    assert result.steps_executed == 1
    assert result.steps_total == 3
    assert transport.texts_for("U1234") == ["before"]

    row = await repository.get_execution(result.execution_id, TENANT)
    assert row.status == ExecutionStatus.WAITING
    assert row.current_step_index == 2
    assert row.resume_at >= invoked_at + timedelta(minutes=60)
    assert row.completed_at is None


@pytest.mark.asyncio
async def test_wait_first_step_executes_nothing(engine, build_workflow):
    wf = await build_workflow([("wait", {"duration_minutes": 5}), _text("later")])

    result = await engine.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.WAITING
    assert result.steps_executed == 0
    assert result.steps_total == 2


@pytest.mark.asyncio
async def test_zero_step_workflow_is_skipped(engine, build_workflow, repository):
    wf = await build_workflow([])

    result = await engine.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.SKIPPED
    assert result.steps_total == 0
    assert result.steps_executed == 0
    assert await repository.list_executions(TENANT) == []


@pytest.mark.asyncio
async def test_missing_workflow_fails_without_execution(engine, repository):
    result = await engine.execute("does-not-exist", CONTEXT, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.execution_id == ""
    assert result.steps_executed == 0
    assert await repository.list_executions(TENANT) == []


@pytest.mark.asyncio
async def test_inactive_workflow_is_unloadable(engine, build_workflow):
    wf = await build_workflow([_text("hi")], status=WorkflowStatus.INACTIVE)

    result = await engine.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.execution_id == ""


class _BrokenWorkflowStore(InMemoryWorkflowRepository):
    async def get_workflow(self, workflow_id, tenant_id):
        raise PersistenceError("connection reset")


@pytest.mark.asyncio
async def test_store_error_on_load_fails(services):
    runner = ExecutionRunner(_BrokenWorkflowStore(), services)

    result = await runner.execute("wf-1", CONTEXT, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.execution_id == ""
    assert result.steps_executed == 0


class _NoCreateRepository(InMemoryWorkflowRepository):
    async def create_execution(self, execution):
        raise PersistenceError("disk full")


@pytest.mark.asyncio
async def test_execution_creation_failure(services, transport):
    repository = _NoCreateRepository()
    runner = ExecutionRunner(repository, services)

    wf = Workflow(tenant_id=TENANT, trigger_type="manual")
    await repository.save_workflow(wf)
    for index in range(3):
        await repository.save_step(
            WorkflowStep(
                workflow_id=wf.id,
                sort_order=index,
                step_type="send_message",
                config={"text": f"m{index}"},
            )
        )

    result = await runner.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert "execution log creation failed" in result.error
    assert "disk full" in result.error
    assert result.steps_executed == 0
    assert transport.sent == []


@pytest.mark.asyncio
async def test_step_error_does_not_stop_later_steps(engine, build_workflow, transport, patient_store):
    wf = await build_workflow(
        [
            ("add_tag", {"tag_id": 42}),
            _text("still sent"),
            ("mark_change", {"mark": "vip"}),
        ]
    )

    result = await engine.execute(wf.id, {"line_user_id": "U1234"}, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.steps_executed == 3
    assert result.steps_total == 3
    assert result.error
    assert "patient_id" in result.error
    assert transport.texts_for("U1234") == ["still sent"]


@pytest.mark.asyncio
async def test_last_error_wins(engine, build_workflow):
    wf = await build_workflow(
        [("add_tag", {"tag_id": 1}), ("switch_richmenu", {"menu_id": 9})]
    )

    result = await engine.execute(wf.id, {"source": "import"}, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.steps_executed == 2
    assert result.error == "no recipient: line_user_id missing from trigger context"


@pytest.mark.asyncio
async def test_unknown_step_type_is_recorded_and_skipped(engine, build_workflow, transport):
    wf = await build_workflow([("condition", {"field": "x"}), _text("next")])

    result = await engine.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.steps_executed == 2
    assert result.error == "unknown step type: condition"
    assert transport.texts_for("U1234") == ["next"]


@pytest.mark.asyncio
async def test_malformed_config_is_step_error(engine, build_workflow):
    wf = await build_workflow([("wait", {"duration_minutes": -5}), _text("next")])

    result = await engine.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.steps_executed == 2
    assert result.error.startswith("invalid wait config")


class _SlowTransport(BaseTransport):
    async def send(self, recipient_id, messages, tenant_id):
        await asyncio.sleep(1)
        return SendResult(ok=True)

    async def link_rich_menu(self, recipient_id, rich_menu_id, tenant_id):
        return SendResult(ok=True)


@pytest.mark.asyncio
async def test_step_timeout_is_recorded(repository, services, build_workflow):
    services.transport = _SlowTransport()
    runner = ExecutionRunner(repository, services, step_timeout=0.05)
    wf = await build_workflow([_text("slow")])

    result = await runner.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.steps_executed == 1
    assert result.error == "send_message step timed out after 0.05s"


@pytest.mark.asyncio
async def test_resume_continues_from_stored_index(engine, build_workflow, transport, repository):
    wf = await build_workflow(
        [_text("one"), ("wait", {"duration_minutes": 1}), _text("two"), _text("three")]
    )
    first = await engine.execute(wf.id, CONTEXT, TENANT)
    row = await repository.get_execution(first.execution_id, TENANT)
    assert await repository.claim_execution(row.id, TENANT)

    resumed = await engine.runner.execute(
        wf.id,
        row.trigger_context,
        TENANT,
        resume_from_index=row.current_step_index,
        execution_id=row.id,
    )

    assert resumed.execution_id == first.execution_id
    assert resumed.status == ExecutionStatus.COMPLETED
    assert resumed.steps_executed == 3
    assert transport.texts_for("U1234") == ["one", "two", "three"]
    assert len(await repository.list_executions(TENANT)) == 1


@pytest.mark.asyncio
async def test_error_before_wait_fails_after_resume(engine, build_workflow, repository):
    wf = await build_workflow(
        [("add_tag", {"tag_id": 3}), ("wait", {"duration_minutes": 1}), _text("after")]
    )
    first = await engine.execute(wf.id, {"line_user_id": "U1234"}, TENANT)
    assert first.status == ExecutionStatus.WAITING
    assert first.error

    row = await repository.get_execution(first.execution_id, TENANT)
    await repository.claim_execution(row.id, TENANT)
    resumed = await engine.runner.execute(
        wf.id, row.trigger_context, TENANT, resume_from_index=2, execution_id=row.id
    )

    assert resumed.status == ExecutionStatus.FAILED
    assert resumed.steps_executed == 2


@pytest.mark.asyncio
async def test_resume_with_other_tenant_execution_runs_nothing(
    engine, build_workflow, transport, repository
):
    wf = await build_workflow([_text("a"), ("wait", {"duration_minutes": 1}), _text("b")])
    first = await engine.execute(wf.id, CONTEXT, TENANT)
    other = await build_workflow(
        [_text("x"), ("wait", {"duration_minutes": 1}), _text("y")], tenant_id="clinic-2"
    )

    result = await engine.runner.execute(
        other.id, CONTEXT, "clinic-2", resume_from_index=2, execution_id=first.execution_id
    )

    assert result.status == ExecutionStatus.FAILED
    assert result.execution_id == ""
    assert transport.texts_for("U1234") == ["a"]
    row = await repository.get_execution(first.execution_id, TENANT)
    assert row.status == ExecutionStatus.WAITING


@pytest.mark.asyncio
async def test_cross_tenant_workflow_is_not_found(engine, build_workflow, repository):
    wf = await build_workflow([_text("secret")], tenant_id="clinic-2")

    result = await engine.execute(wf.id, CONTEXT, TENANT)

    assert result.status == ExecutionStatus.FAILED
    assert result.execution_id == ""
    assert await repository.list_executions("clinic-2") == []


@pytest.mark.asyncio
async def test_resume_of_deactivated_workflow_fails_row(engine, build_workflow, repository):
    wf = await build_workflow([_text("a"), ("wait", {"duration_minutes": 1}), _text("b")])
    first = await engine.execute(wf.id, CONTEXT, TENANT)
    await repository.save_workflow(wf.model_copy(update={"status": WorkflowStatus.ARCHIVED}))

    result = await engine.runner.execute(
        wf.id, CONTEXT, TENANT, resume_from_index=2, execution_id=first.execution_id
    )

    assert result.status == ExecutionStatus.FAILED
    row = await repository.get_execution(first.execution_id, TENANT)
    assert row.status == ExecutionStatus.FAILED
    assert row.resume_at is None


@pytest.mark.asyncio
async def test_resume_index_without_execution_id_is_rejected(
    engine, build_workflow, transport, repository
):
    wf = await build_workflow([_text("a"), ("wait", {"duration_minutes": 1}), _text("b")])
    first = await engine.execute(wf.id, CONTEXT, TENANT)

    result = await engine.execute(wf.id, CONTEXT, TENANT, resume_from_index=2)

    assert result.status == ExecutionStatus.FAILED
    assert result.execution_id == ""
    assert result.error == "resume requires an execution id"
    assert transport.texts_for("U1234") == ["a"]
    [row] = await repository.list_executions(TENANT)
    assert row.id == first.execution_id
    assert row.status == ExecutionStatus.WAITING


@pytest.mark.asyncio
async def test_engine_execute_resumes_existing_execution(
    engine, build_workflow, transport, repository
):
    wf = await build_workflow([_text("a"), ("wait", {"duration_minutes": 1}), _text("b")])
    first = await engine.execute(wf.id, CONTEXT, TENANT)
    assert await repository.claim_execution(first.execution_id, TENANT)

    result = await engine.execute(
        wf.id, CONTEXT, TENANT, resume_from_index=2, execution_id=first.execution_id
    )

    assert result.status == ExecutionStatus.COMPLETED
    assert result.execution_id == first.execution_id
    assert result.steps_executed == 2
    assert transport.texts_for("U1234") == ["a", "b"]
    assert len(await repository.list_executions(TENANT)) == 1
