"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

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
_TERMINAL = tuple(s.value for s in TERMINAL_STATUSES)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Normalise to a UTC ISO string so text comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _ts(value)
    if isinstance(value, dict):
        return json.dumps(value)
    return value


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_config TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                sort_order INTEGER NOT NULL,
                step_type TEXT NOT NULL,
                config TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                patient_id TEXT,
                trigger_context TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_index INTEGER NOT NULL,
                steps_total INTEGER NOT NULL,
                steps_executed INTEGER NOT NULL,
                resume_at TEXT,
                error TEXT,
                started_at TEXT NOT NULL,
                updated_at TEXT,
                completed_at TEXT,
                version INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflows_trigger "
            "ON workflows (tenant_id, trigger_type, status)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_executions_waiting "
            "ON workflow_executions (status, resume_at)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    @staticmethod
    def _row_to_workflow(r: sqlite3.Row) -> Workflow:
        return Workflow(
            id=r["id"],
            tenant_id=r["tenant_id"],
            name=r["name"],
            status=r["status"],
            trigger_type=r["trigger_type"],
            trigger_config=json.loads(r["trigger_config"]) if r["trigger_config"] else None,
            created_at=_parse_ts(r["created_at"]),
        )

    @staticmethod
    def _row_to_execution(r: sqlite3.Row) -> WorkflowExecution:
        return WorkflowExecution(
            id=r["id"],
            workflow_id=r["workflow_id"],
            tenant_id=r["tenant_id"],
            patient_id=r["patient_id"],
            trigger_context=json.loads(r["trigger_context"]),
            status=r["status"],
            current_step_index=r["current_step_index"],
            steps_total=r["steps_total"],
            steps_executed=r["steps_executed"],
            resume_at=_parse_ts(r["resume_at"]),
            error=r["error"],
            started_at=_parse_ts(r["started_at"]),
            updated_at=_parse_ts(r["updated_at"]),
            completed_at=_parse_ts(r["completed_at"]),
            version=r["version"],
        )

    # ------------------------------------------------------------------
    # Repository API
    async def save_workflow(self, workflow: Workflow) -> Workflow:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflows "
            "(id, tenant_id, name, status, trigger_type, trigger_config, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            workflow.id,
            workflow.tenant_id,
            workflow.name,
            workflow.status.value,
            workflow.trigger_type,
            json.dumps(workflow.trigger_config) if workflow.trigger_config is not None else None,
            _ts(workflow.created_at),
        )
        return workflow

    async def save_step(self, step: WorkflowStep) -> WorkflowStep:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflow_steps "
            "(id, workflow_id, sort_order, step_type, config) VALUES (?, ?, ?, ?, ?)",
            step.id,
            step.workflow_id,
            step.sort_order,
            step.step_type,
            json.dumps(step.config),
        )
        return step

    async def get_workflow(self, workflow_id: str, tenant_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM workflows WHERE id = ? AND tenant_id = ?",
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
        query = "SELECT * FROM workflows WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if trigger_type is not None:
            query += " AND trigger_type = ?"
            params.append(trigger_type)
        if status is not None:
            query += " AND status = ?"
            params.append(_column_value(status))
        query += " ORDER BY created_at"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._row_to_workflow(r) for r in rows]

    async def list_steps(self, workflow_id: str, tenant_id: str) -> list[WorkflowStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT s.id, s.workflow_id, s.sort_order, s.step_type, s.config
            FROM workflow_steps s JOIN workflows w ON w.id = s.workflow_id
            WHERE s.workflow_id = ? AND w.tenant_id = ?
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
                config=json.loads(r["config"]),
            )
            for r in rows
        ]

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflow_executions ({_EXECUTION_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            execution.id,
            execution.workflow_id,
            execution.tenant_id,
            execution.patient_id,
            json.dumps(execution.trigger_context),
            execution.status.value,
            execution.current_step_index,
            execution.steps_total,
            execution.steps_executed,
            _ts(execution.resume_at),
            execution.error,
            _ts(execution.started_at),
            _ts(execution.updated_at),
            _ts(execution.completed_at),
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
        assignments = [f"{column} = ?" for column in patch]
        assignments += ["updated_at = ?", "version = version + 1"]
        params: list[Any] = [_column_value(v) for v in patch.values()]
        params.append(_ts(utcnow()))
        query = (
            f"UPDATE workflow_executions SET {', '.join(assignments)} "
            f"WHERE id = ? AND tenant_id = ? AND status NOT IN ({', '.join('?' * len(_TERMINAL))})"
        )
        params += [execution_id, tenant_id, *_TERMINAL]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(_column_value(expected_status))
        changed = await asyncio.to_thread(self._execute, query, *params)
        return changed > 0

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
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_EXECUTION_COLUMNS} FROM workflow_executions WHERE id = ? AND tenant_id = ?",
            execution_id,
            tenant_id,
        )
        return self._row_to_execution(row) if row else None

    async def list_executions(
        self, tenant_id: str, workflow_id: Optional[str] = None
    ) -> list[WorkflowExecution]:
        query = f"SELECT {_EXECUTION_COLUMNS} FROM workflow_executions WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if workflow_id is not None:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        query += " ORDER BY started_at DESC"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._row_to_execution(r) for r in rows]

    async def list_waiting_executions(
        self, now: datetime, limit: int = 100
    ) -> list[WorkflowExecution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_EXECUTION_COLUMNS} FROM workflow_executions "
            "WHERE status = ? AND resume_at IS NOT NULL AND resume_at <= ? "
            "ORDER BY resume_at LIMIT ?",
            ExecutionStatus.WAITING.value,
            _ts(now),
            limit,
        )
        return [self._row_to_execution(r) for r in rows]
