"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ..contracts import ExecutionStatus
from .models import Workflow, WorkflowExecution, WorkflowStep


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Every read and write is filtered by ``tenant_id``; a row belonging to a
    different tenant behaves exactly like a missing row. The only cross-tenant
    query is ``list_waiting_executions`` used by the resume sweep, whose rows
    carry their own ``tenant_id`` for the scoped calls that follow.
    """

    async def save_workflow(self, workflow: Workflow) -> Workflow:
        """Insert or replace a workflow definition."""

    async def save_step(self, step: WorkflowStep) -> WorkflowStep:
        """Insert or replace a workflow step."""

    async def get_workflow(self, workflow_id: str, tenant_id: str) -> Workflow | None:
        """Return the workflow if it belongs to ``tenant_id``."""

    async def list_workflows(
        self,
        tenant_id: str,
        trigger_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Workflow]:
        """Return the tenant's workflows, optionally filtered."""

    async def list_steps(self, workflow_id: str, tenant_id: str) -> list[WorkflowStep]:
        """Return steps ordered by ``sort_order`` ascending."""

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Insert a new execution row."""

    async def update_execution(
        self,
        execution_id: str,
        tenant_id: str,
        patch: dict[str, Any],
        expected_status: Optional[ExecutionStatus] = None,
    ) -> bool:
        """Apply ``patch`` to a non-terminal execution.

        When ``expected_status`` is given the update only applies if the row
        currently has that status. Returns ``True`` if a row changed.
        """

    async def claim_execution(self, execution_id: str, tenant_id: str) -> bool:
        """Move a waiting execution to running. ``False`` if already claimed."""

    async def get_execution(
        self, execution_id: str, tenant_id: str
    ) -> WorkflowExecution | None:
        """Return the execution if it belongs to ``tenant_id``."""

    async def list_executions(
        self, tenant_id: str, workflow_id: Optional[str] = None
    ) -> list[WorkflowExecution]:
        """Return the tenant's executions, newest first."""

    async def list_waiting_executions(
        self, now: datetime, limit: int = 100
    ) -> list[WorkflowExecution]:
        """Return waiting executions whose ``resume_at`` is due, oldest first."""
