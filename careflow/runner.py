"""Execution runner: drives a workflow's steps and persists progress."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Mapping, Optional

from .constants import DEFAULT_STEP_TIMEOUT, EXECUTION_CREATE_FAILED
from .contracts import (
    ExecutionResult,
    ExecutionStatus,
    WaitConfig,
    parse_step_config,
    utcnow,
)
from .errors import CareflowError, ConfigurationError, PersistenceError
from .persistence import WorkflowRepository
from .persistence.models import Workflow, WorkflowExecution, WorkflowStep
from .steps import StepServices, dispatch

logger = logging.getLogger(__name__)


class ExecutionRunner:
    """Runs one workflow for one trigger context.

    A run stops at the first ``wait`` step, leaving a ``waiting`` row that the
    resume sweep picks up later. Errors from individual steps are recorded and
    the run continues with the next step; the run ends ``failed`` when any
    step errored.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        services: StepServices,
        step_timeout: float = DEFAULT_STEP_TIMEOUT,
    ) -> None:
        self._repository = repository
        self._services = services
        self._step_timeout = step_timeout

    async def execute(
        self,
        workflow_id: str,
        context: Mapping[str, Any],
        tenant_id: str,
        resume_from_index: int = 0,
        execution_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Run ``workflow_id`` starting at step ``resume_from_index``.

        Args:
            workflow_id: Workflow to run.
            context: Trigger context handed to every step.
            tenant_id: Tenant owning the workflow.
            resume_from_index: First step to run.
            execution_id: Existing execution row to continue. When omitted a
                new row is created.

        Returns:
            ExecutionResult describing where the run ended.
        """
        context = dict(context)
        workflow = await self._load_workflow(workflow_id, tenant_id)
        if workflow is None or not workflow.is_active:
            error = "workflow not found or inactive"
            if execution_id is not None:
                await self._finish(execution_id, tenant_id, ExecutionStatus.FAILED, error)
            return ExecutionResult(status=ExecutionStatus.FAILED, error=error)

        steps = await self._load_steps(workflow_id, tenant_id)
        if not steps:
            error = "workflow has no steps"
            if execution_id is not None:
                await self._finish(execution_id, tenant_id, ExecutionStatus.SKIPPED, error)
            return ExecutionResult(
                execution_id=execution_id or "",
                status=ExecutionStatus.SKIPPED,
                error=error,
            )

        if execution_id is None and resume_from_index > 0:
            logger.error(
                f"Refusing to start workflow={workflow_id} at step {resume_from_index} "
                "without an execution id"
            )
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                steps_total=len(steps),
                error="resume requires an execution id",
            )

        if execution_id is None:
            execution = WorkflowExecution(
                workflow_id=workflow.id,
                tenant_id=tenant_id,
                patient_id=_optional_str(context.get("patient_id")),
                trigger_context=context,
                current_step_index=resume_from_index,
                steps_total=len(steps),
            )
            try:
                await self._repository.create_execution(execution)
            except CareflowError as e:
                logger.error(
                    f"Could not create execution for workflow={workflow_id} tenant={tenant_id}: {e}"
                )
                return ExecutionResult(
                    status=ExecutionStatus.FAILED,
                    steps_total=len(steps),
                    error=f"{EXECUTION_CREATE_FAILED}: {e}",
                )
        else:
            execution = await self._repository.get_execution(execution_id, tenant_id)
            if execution is None or execution.status.is_terminal:
                return ExecutionResult(
                    execution_id=execution_id if execution else "",
                    status=ExecutionStatus.FAILED,
                    error="execution not found or already finished",
                )
            if resume_from_index > len(steps):
                error = (
                    f"workflow changed while waiting: resume step {resume_from_index} "
                    f"beyond {len(steps)} step(s)"
                )
                logger.error(f"Execution {execution_id}: {error}")
                steps_executed = min(execution.steps_executed, len(steps))
                await self._finish(
                    execution_id,
                    tenant_id,
                    ExecutionStatus.FAILED,
                    error,
                    current_step_index=len(steps),
                    steps_total=len(steps),
                    steps_executed=steps_executed,
                )
                return ExecutionResult(
                    execution_id=execution_id,
                    status=ExecutionStatus.FAILED,
                    steps_executed=steps_executed,
                    steps_total=len(steps),
                    error=error,
                )
            if execution.steps_total != len(steps):
                # the workflow was edited while this execution was parked
                logger.warning(
                    f"Execution {execution_id} resumes against {len(steps)} step(s), "
                    f"{execution.steps_total} recorded"
                )
                await self._update(execution_id, tenant_id, {"steps_total": len(steps)})

        return await self._run_steps(workflow, steps, context, execution, resume_from_index)

    # ------------------------------------------------------------------
    async def _run_steps(
        self,
        workflow: Workflow,
        steps: list[WorkflowStep],
        context: dict[str, Any],
        execution: WorkflowExecution,
        start: int,
    ) -> ExecutionResult:
        tenant_id = execution.tenant_id
        total = len(steps)
        steps_executed = min(execution.steps_executed, total)
        # errors recorded before a pause still fail the execution
        last_error = execution.error

        for index in range(start, total):
            step = steps[index]
            try:
                config = parse_step_config(step.step_type, step.config)
            except ConfigurationError as e:
                error: Optional[str] = str(e)
                logger.error(f"Step {step.id} of workflow={workflow.id} is misconfigured: {e}")
            else:
                if isinstance(config, WaitConfig):
                    return await self._pause(
                        execution.id, tenant_id, index, config, steps_executed, total, last_error
                    )
                error = await self._run_step(step, config, context, tenant_id)

            if error:
                last_error = error
            steps_executed += 1
            await self._update(
                execution.id,
                tenant_id,
                {"current_step_index": index + 1, "steps_executed": steps_executed},
            )

        status = ExecutionStatus.FAILED if last_error else ExecutionStatus.COMPLETED
        await self._finish(
            execution.id,
            tenant_id,
            status,
            last_error,
            current_step_index=total,
            steps_executed=steps_executed,
        )
        logger.info(
            f"Workflow {workflow.id} execution {execution.id} {status.value} "
            f"({steps_executed}/{total} steps)"
        )
        return ExecutionResult(
            execution_id=execution.id,
            status=status,
            steps_executed=steps_executed,
            steps_total=total,
            error=last_error,
        )

    async def _run_step(
        self,
        step: WorkflowStep,
        config: Any,
        context: Mapping[str, Any],
        tenant_id: str,
    ) -> Optional[str]:
        """Run one step. Returns the error message, or ``None`` on success."""
        try:
            outcome = await asyncio.wait_for(
                dispatch(step.step_type, config, context, tenant_id, self._services),
                timeout=self._step_timeout,
            )
        except asyncio.TimeoutError:
            error = f"{step.step_type} step timed out after {self._step_timeout:g}s"
        except Exception as e:
            error = str(e) or e.__class__.__name__
        else:
            if outcome.success:
                logger.debug(f"Step {step.id} ({step.step_type}) ok: {outcome.detail}")
                return None
            error = outcome.error or f"{step.step_type} step failed"
        logger.error(f"Step {step.id} ({step.step_type}) failed for tenant={tenant_id}: {error}")
        return error

    async def _pause(
        self,
        execution_id: str,
        tenant_id: str,
        index: int,
        config: WaitConfig,
        steps_executed: int,
        total: int,
        last_error: Optional[str],
    ) -> ExecutionResult:
        resume_at = utcnow() + timedelta(minutes=config.duration_minutes)
        await self._update(
            execution_id,
            tenant_id,
            {
                "status": ExecutionStatus.WAITING,
                "current_step_index": index + 1,
                "steps_executed": steps_executed,
                "resume_at": resume_at,
                "error": last_error,
            },
        )
        logger.info(
            f"Execution {execution_id} waiting until {resume_at.isoformat()} "
            f"(resumes at step {index + 2}/{total})"
        )
        return ExecutionResult(
            execution_id=execution_id,
            status=ExecutionStatus.WAITING,
            steps_executed=steps_executed,
            steps_total=total,
            error=last_error,
        )

    # ------------------------------------------------------------------
    async def _load_workflow(self, workflow_id: str, tenant_id: str) -> Workflow | None:
        try:
            return await self._repository.get_workflow(workflow_id, tenant_id)
        except CareflowError as e:
            logger.error(f"Could not load workflow={workflow_id} tenant={tenant_id}: {e}")
            return None

    async def _load_steps(self, workflow_id: str, tenant_id: str) -> list[WorkflowStep]:
        try:
            return await self._repository.list_steps(workflow_id, tenant_id)
        except CareflowError as e:
            logger.error(f"Could not load steps for workflow={workflow_id}: {e}")
            return []

    async def _update(self, execution_id: str, tenant_id: str, patch: dict[str, Any]) -> None:
        try:
            await self._repository.update_execution(execution_id, tenant_id, patch)
        except PersistenceError as e:
            logger.warning(f"Could not record progress for execution {execution_id}: {e}")

    async def _finish(
        self,
        execution_id: str,
        tenant_id: str,
        status: ExecutionStatus,
        error: Optional[str],
        **fields: Any,
    ) -> None:
        await self._update(
            execution_id,
            tenant_id,
            {
                "status": status,
                "error": error,
                "resume_at": None,
                "completed_at": utcnow(),
                **fields,
            },
        )


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None or value == "" else str(value)
