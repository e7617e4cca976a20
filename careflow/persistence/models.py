"""Data models for persisted workflow state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import ExecutionStatus, WorkflowStatus, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class Workflow(BaseModel):
    """Tenant-scoped automation definition. Authored elsewhere, read here."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    name: str = ""
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    trigger_type: str
    trigger_config: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE


class WorkflowStep(BaseModel):
    """One step row. ``step_type`` stays a plain string so unknown types load."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    sort_order: int
    step_type: str
    config: dict[str, Any] = Field(default_factory=dict)


class WorkflowExecution(BaseModel):
    """Persisted run instance of a workflow for one trigger context."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    tenant_id: str
    patient_id: Optional[str] = None
    trigger_context: dict[str, Any] = Field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    current_step_index: int = 0
    steps_total: int = 0
    steps_executed: int = 0
    resume_at: Optional[datetime] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 1


# Columns ``update_execution`` may patch.
EXECUTION_MUTABLE_FIELDS = frozenset(
    {
        "status",
        "current_step_index",
        "steps_total",
        "steps_executed",
        "resume_at",
        "error",
        "completed_at",
    }
)
