"""PostgreSQL implementation of the patient stores."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from ..errors import PersistenceError
from .base import Identifier, MessageTemplate, PatientMark, RichMenu


class PostgresPatientStore:
    """Tag, mark, template and rich menu tables in PostgreSQL."""

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
            CREATE TABLE IF NOT EXISTS patient_tags (
                tenant_id TEXT NOT NULL,
                patient_id TEXT NOT NULL,
                tag_id TEXT NOT NULL,
                assigned_by TEXT NOT NULL DEFAULT 'workflow',
                assigned_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                PRIMARY KEY (tenant_id, patient_id, tag_id)
            );
            CREATE TABLE IF NOT EXISTS patient_marks (
                tenant_id TEXT NOT NULL,
                patient_id TEXT NOT NULL,
                mark TEXT NOT NULL,
                note TEXT,
                updated_by TEXT NOT NULL DEFAULT 'workflow',
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                PRIMARY KEY (tenant_id, patient_id)
            );
            CREATE TABLE IF NOT EXISTS message_templates (
                tenant_id TEXT NOT NULL,
                id TEXT NOT NULL,
                content TEXT NOT NULL,
                message_type TEXT NOT NULL,
                flex_content JSONB,
                PRIMARY KEY (tenant_id, id)
            );
            CREATE TABLE IF NOT EXISTS rich_menus (
                tenant_id TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL,
                line_rich_menu_id TEXT,
                PRIMARY KEY (tenant_id, id)
            );
            """
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

    # Tag store ---------------------------------------------------------
    async def add_tag(self, tenant_id: str, patient_id: str, tag_id: Identifier) -> None:
        await self._run(
            "execute",
            "INSERT INTO patient_tags (tenant_id, patient_id, tag_id) VALUES ($1, $2, $3) "
            "ON CONFLICT DO NOTHING",
            tenant_id,
            patient_id,
            str(tag_id),
        )

    async def remove_tag(self, tenant_id: str, patient_id: str, tag_id: Identifier) -> None:
        await self._run(
            "execute",
            "DELETE FROM patient_tags WHERE tenant_id = $1 AND patient_id = $2 AND tag_id = $3",
            tenant_id,
            patient_id,
            str(tag_id),
        )

    async def list_tags(self, tenant_id: str, patient_id: str) -> list[str]:
        rows = await self._run(
            "fetch",
            "SELECT tag_id FROM patient_tags WHERE tenant_id = $1 AND patient_id = $2 ORDER BY tag_id",
            tenant_id,
            patient_id,
        )
        return [r["tag_id"] for r in rows]

    # Mark store --------------------------------------------------------
    async def set_mark(
        self, tenant_id: str, patient_id: str, mark: str, note: Optional[str] = None
    ) -> None:
        await self._run(
            "execute",
            """
            INSERT INTO patient_marks (tenant_id, patient_id, mark, note)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (tenant_id, patient_id) DO UPDATE SET
                mark = EXCLUDED.mark, note = EXCLUDED.note, updated_at = now()
            """,
            tenant_id,
            patient_id,
            mark,
            note,
        )

    async def get_mark(self, tenant_id: str, patient_id: str) -> PatientMark | None:
        row = await self._run(
            "fetchrow",
            "SELECT patient_id, mark, note, updated_by FROM patient_marks "
            "WHERE tenant_id = $1 AND patient_id = $2",
            tenant_id,
            patient_id,
        )
        return PatientMark(**dict(row)) if row else None

    # Templates and rich menus -----------------------------------------
    async def get_template(
        self, tenant_id: str, template_id: Identifier
    ) -> MessageTemplate | None:
        row = await self._run(
            "fetchrow",
            "SELECT * FROM message_templates WHERE tenant_id = $1 AND id = $2",
            tenant_id,
            str(template_id),
        )
        if not row:
            return None
        flex = row["flex_content"]
        return MessageTemplate(
            id=row["id"],
            tenant_id=row["tenant_id"],
            content=row["content"],
            message_type=row["message_type"],
            flex_content=json.loads(flex) if isinstance(flex, str) else flex,
        )

    async def get_rich_menu(self, tenant_id: str, menu_id: Identifier) -> RichMenu | None:
        row = await self._run(
            "fetchrow",
            "SELECT * FROM rich_menus WHERE tenant_id = $1 AND id = $2",
            tenant_id,
            str(menu_id),
        )
        return RichMenu(**dict(row)) if row else None
