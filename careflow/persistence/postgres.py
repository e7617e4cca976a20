"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import asyncpg

from ..contracts import TERMINAL_STATUSES, ExecutionStatus, utcnow
from ..errors import PersistenceError
from .models import (
    EXECUTION_MUTABLE_FIELDS,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
)
from .repository import WorkflowRepository

_EXECUTION_COLUMNS = (
    "id, workflow_id, tenant_id, patient_id, trigger_context, status, "
    "current_step_index, steps_total, steps_executed, resume_at, error, "
    "started_at, updated_at, completed_at, version"
)


def _json(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_config JSONB,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL REFERENCES workflows (id),
                sort_order INTEGER NOT NULL,
                step_type TEXT NOT NULL,
                config JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                patient_id TEXT,
                trigger_context JSONB NOT NULL,
                status TEXT NOT NULL,
                current_step_index INTEGER NOT NULL,
                steps_total INTEGER NOT NULL,
                steps_executed INTEGER NOT NULL,
                resume_at TIMESTAMPTZ,
                error TEXT,
                started_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                version INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_executions_waiting "
            "ON workflow_executions (status, resume_at)"
        )

    async def _run(self, method: str, query: str, *params: Any) -> Any:
        try:
            conn = await self._connect()
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"cannot connect to database: {e}") from e
        try:
            return await getattr(conn, method)(query, *params)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e)) from e
        finally:
            await conn.close()

    @staticmethod
    def _row_to_workflow(r: asyncpg.Record) -> Workflow:
        return Workflow(
            id=r["id"],
            tenant_id=r["tenant_id"],
            name=r["name"],
            status=r["status"],
            trigger_type=r["trigger_type"],
            trigger_config=_json(r["trigger_config"]),
            created_at=r["created_at"],
        )

    @staticmethod
    def _row_to_execution(r: asyncpg.Record) -> WorkflowExecution:
        return WorkflowExecution(
            id=r["id"],
            workflow_id=r["workflow_id"],
            tenant_id=r["tenant_id"],
            patient_id=r["patient_id"],
            trigger_context=_json(r["trigger_context"]),
            status=r["status"],
            current_step_index=r["current_step_index"],
            steps_total=r["steps_total"],
            steps_executed=r["steps_executed"],
            resume_at=r["resume_at"],
            error=r["error"],
            started_at=r["started_at"],
            updated_at=r["updated_at"],
            completed_at=r["completed_at"],
            version=r["version"],
        )

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> Workflow:
        await self._run(
            "execute",
            """
            INSERT INTO workflows (id, tenant_id, name, status, trigger_type, trigger_config, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                status = EXCLUDED.status,
                trigger_type = EXCLUDED.trigger_type,
                trigger_config = EXCLUDED.trigger_config
            """,
            workflow.id,
            workflow.tenant_id,
            workflow.name,
            workflow.status.value,
            workflow.trigger_type,
            json.dumps(workflow.trigger_config) if workflow.trigger_config is not None else None,
            workflow.created_at,
        )
        return workflow

    async def save_step(self, step: WorkflowStep) -> WorkflowStep:
        await self._run(
            "execute",
            """
            INSERT INTO workflow_steps (id, workflow_id, sort_order, step_type, config)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                sort_order = EXCLUDED.sort_order,
                step_type = EXCLUDED.step_type,
                config = EXCLUDED.config
            """,
            step.id,
            step.workflow_id,
            step.sort_order,
            step.step_type,
            json.dumps(step.config),
        )
        return step

    async def get_workflow(self, workflow_id: str, tenant_id: str) -> Workflow | None:
        row = await self._run(
            "fetchrow",
            "SELECT * FROM workflows WHERE id = $1 AND tenant_id = $2",
            workflow_id,
            tenant_id,
        )
        return self._row_to_workflow(row) if row else None

    async def list_workflows(
        self,
        tenant_id: str,
        trigger_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Workflow]:
        rows = await self._run(
            "fetch",
            """
            SELECT * FROM workflows
            WHERE tenant_id = $1
              AND ($2::text IS NULL OR trigger_type = $2)
              AND ($3::text IS NULL OR status = $3)
            ORDER BY created_at
            """,
            tenant_id,
            trigger_type,
            _column_value(status),
        )
        return [self._row_to_workflow(r) for r in rows]

    async def list_steps(self, workflow_id: str, tenant_id: str) -> list[WorkflowStep]:
        rows = await self._run(
            "fetch",
            """
            SELECT s.id, s.workflow_id, s.sort_order, s.step_type, s.config
            FROM workflow_steps s JOIN workflows w ON w.id = s.workflow_id
            WHERE s.workflow_id = $1 AND w.tenant_id = $2
            ORDER BY s.sort_order
            """,
            workflow_id,
            tenant_id,
        )
        return [
            WorkflowStep(
                id=r["id"],
                workflow_id=r["workflow_id"],
                sort_order=r["sort_order"],
                step_type=r["step_type"],
                config=_json(r["config"]),
            )
            for r in rows
        ]

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        await self._run(
            "execute",
            f"INSERT INTO workflow_executions ({_EXECUTION_COLUMNS}) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)",
            execution.id,
            execution.workflow_id,
            execution.tenant_id,
            execution.patient_id,
            json.dumps(execution.trigger_context),
            execution.status.value,
            execution.current_step_index,
            execution.steps_total,
            execution.steps_executed,
            execution.resume_at,
            execution.error,
            execution.started_at,
            execution.updated_at,
            execution.completed_at,
            execution.version,
        )
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
        params: list[Any] = [_column_value(v) for v in patch.values()]
        assignments = [f"{column} = ${i}" for i, column in enumerate(patch, start=1)]
        params.append(utcnow())
        assignments += [f"updated_at = ${len(params)}", "version = version + 1"]
        params += [execution_id, tenant_id, [s.value for s in TERMINAL_STATUSES]]
        n = len(params)
        query = (
            f"UPDATE workflow_executions SET {', '.join(assignments)} "
            f"WHERE id = ${n - 2} AND tenant_id = ${n - 1} AND NOT (status = ANY(${n}::text[]))"
        )
        if expected_status is not None:
            params.append(_column_value(expected_status))
            query += f" AND status = ${len(params)}"
        result = await self._run("execute", query, *params)
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return result.split()[-1] != "0"

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
        row = await self._run(
            "fetchrow",
            f"SELECT {_EXECUTION_COLUMNS} FROM workflow_executions WHERE id = $1 AND tenant_id = $2",
            execution_id,
            tenant_id,
        )
        return self._row_to_execution(row) if row else None

    async def list_executions(
        self, tenant_id: str, workflow_id: Optional[str] = None
    ) -> list[WorkflowExecution]:
        rows = await self._run(
            "fetch",
            f"SELECT {_EXECUTION_COLUMNS} FROM workflow_executions "
            "WHERE tenant_id = $1 AND ($2::text IS NULL OR workflow_id = $2) "
            "ORDER BY started_at DESC",
            tenant_id,
            workflow_id,
        )
        return [self._row_to_execution(r) for r in rows]

    async def list_waiting_executions(
        self, now: datetime, limit: int = 100
    ) -> list[WorkflowExecution]:
        rows = await self._run(
            "fetch",
            f"SELECT {_EXECUTION_COLUMNS} FROM workflow_executions "
            "WHERE status = $1 AND resume_at IS NOT NULL AND resume_at <= $2 "
            "ORDER BY resume_at LIMIT $3",
            ExecutionStatus.WAITING.value,
            now,
            limit,
        )
        return [self._row_to_execution(r) for r in rows]
