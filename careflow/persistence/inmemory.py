"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from ..contracts import ExecutionStatus, utcnow
from ..errors import PersistenceError
from .models import (
    EXECUTION_MUTABLE_FIELDS,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._steps: Dict[str, WorkflowStep] = {}
        self._executions: Dict[str, WorkflowExecution] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> Workflow:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)
        return workflow

    async def save_step(self, step: WorkflowStep) -> WorkflowStep:
        self._steps[step.id] = step.model_copy(deep=True)
        return step

    async def get_workflow(self, workflow_id: str, tenant_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        if wf is None or wf.tenant_id != tenant_id:
            return None
        return wf.model_copy(deep=True)

    async def list_workflows(
        self,
        tenant_id: str,
        trigger_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Workflow]:
        return [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if wf.tenant_id == tenant_id
            and (trigger_type is None or wf.trigger_type == trigger_type)
            and (status is None or wf.status == status)
        ]

    async def list_steps(self, workflow_id: str, tenant_id: str) -> list[WorkflowStep]:
        if await self.get_workflow(workflow_id, tenant_id) is None:
            return []
        steps = [s for s in self._steps.values() if s.workflow_id == workflow_id]
        return [s.model_copy(deep=True) for s in sorted(steps, key=lambda s: s.sort_order)]

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        if execution.id in self._executions:
            raise PersistenceError(f"execution {execution.id} already exists")
        self._executions[execution.id] = execution.model_copy(deep=True)
        return execution

    async def update_execution(
        self,
        execution_id: str,
        tenant_id: str,
        patch: dict[str, Any],
        expected_status: Optional[ExecutionStatus] = None,
    ) -> bool:
        unknown = set(patch) - EXECUTION_MUTABLE_FIELDS
        if unknown:
            raise PersistenceError(f"cannot update execution fields: {sorted(unknown)}")
        async with self._lock:
            ex = self._executions.get(execution_id)
            if ex is None or ex.tenant_id != tenant_id or ex.status.is_terminal:
                return False
            if expected_status is not None and ex.status != expected_status:
                return False
            updated = ex.model_copy(
                update={**patch, "updated_at": utcnow(), "version": ex.version + 1}
            )
            self._executions[execution_id] = WorkflowExecution.model_validate(
                updated.model_dump()
            )
            return True

    async def claim_execution(self, execution_id: str, tenant_id: str) -> bool:
        return await self.update_execution(
            execution_id,
            tenant_id,
            {"status": ExecutionStatus.RUNNING, "resume_at": None},
            expected_status=ExecutionStatus.WAITING,
        )

    async def get_execution(
        self, execution_id: str, tenant_id: str
    ) -> WorkflowExecution | None:
        ex = self._executions.get(execution_id)
        if ex is None or ex.tenant_id != tenant_id:
            return None
        return ex.model_copy(deep=True)

    async def list_executions(
        self, tenant_id: str, workflow_id: Optional[str] = None
    ) -> list[WorkflowExecution]:
        rows = [
            ex
            for ex in self._executions.values()
            if ex.tenant_id == tenant_id
            and (workflow_id is None or ex.workflow_id == workflow_id)
        ]
        rows.sort(key=lambda ex: ex.started_at, reverse=True)
        return [ex.model_copy(deep=True) for ex in rows]

    async def list_waiting_executions(
        self, now: datetime, limit: int = 100
    ) -> list[WorkflowExecution]:
        due = [
            ex
            for ex in self._executions.values()
            if ex.status == ExecutionStatus.WAITING
            and ex.resume_at is not None
            and ex.resume_at <= now
        ]
        due.sort(key=lambda ex: ex.resume_at)
        return [ex.model_copy(deep=True) for ex in due[:limit]]
