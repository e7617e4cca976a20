"""SQLite implementation of the patient stores."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Optional

from ..contracts import utcnow
from ..errors import PersistenceError
from .base import Identifier, MessageTemplate, PatientMark, RichMenu


class SQLitePatientStore:
    """Tag, mark, template and rich menu tables in a SQLite database."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS patient_tags (
                tenant_id TEXT NOT NULL,
                patient_id TEXT NOT NULL,
                tag_id TEXT NOT NULL,
                assigned_by TEXT NOT NULL,
                assigned_at TEXT NOT NULL,
                PRIMARY KEY (tenant_id, patient_id, tag_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS patient_marks (
                tenant_id TEXT NOT NULL,
                patient_id TEXT NOT NULL,
                mark TEXT NOT NULL,
                note TEXT,
                updated_by TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (tenant_id, patient_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS message_templates (
                tenant_id TEXT NOT NULL,
                id TEXT NOT NULL,
                content TEXT NOT NULL,
                message_type TEXT NOT NULL,
                flex_content TEXT,
                PRIMARY KEY (tenant_id, id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS rich_menus (
                tenant_id TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL,
                line_rich_menu_id TEXT,
                PRIMARY KEY (tenant_id, id)
            )
            """
        )
        self._conn.commit()

    def _execute(self, query: str, *params: Any) -> None:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    async def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return rows[0] if rows else None

    # Tag store ---------------------------------------------------------
    async def add_tag(self, tenant_id: str, patient_id: str, tag_id: Identifier) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR IGNORE INTO patient_tags "
            "(tenant_id, patient_id, tag_id, assigned_by, assigned_at) VALUES (?, ?, ?, ?, ?)",
            tenant_id,
            patient_id,
            str(tag_id),
            "workflow",
            utcnow().isoformat(),
        )

    async def remove_tag(self, tenant_id: str, patient_id: str, tag_id: Identifier) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM patient_tags WHERE tenant_id = ? AND patient_id = ? AND tag_id = ?",
            tenant_id,
            patient_id,
            str(tag_id),
        )

    async def list_tags(self, tenant_id: str, patient_id: str) -> list[str]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT tag_id FROM patient_tags WHERE tenant_id = ? AND patient_id = ? ORDER BY tag_id",
            tenant_id,
            patient_id,
        )
        return [r["tag_id"] for r in rows]

    # Mark store --------------------------------------------------------
    async def set_mark(
        self, tenant_id: str, patient_id: str, mark: str, note: Optional[str] = None
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO patient_marks "
            "(tenant_id, patient_id, mark, note, updated_by, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            tenant_id,
            patient_id,
            mark,
            note,
            "workflow",
            utcnow().isoformat(),
        )

    async def get_mark(self, tenant_id: str, patient_id: str) -> PatientMark | None:
        row = await self._fetchone(
            "SELECT patient_id, mark, note, updated_by FROM patient_marks "
            "WHERE tenant_id = ? AND patient_id = ?",
            tenant_id,
            patient_id,
        )
        return PatientMark(**dict(row)) if row else None

    # Templates and rich menus -----------------------------------------
    async def save_template(self, template: MessageTemplate) -> MessageTemplate:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO message_templates "
            "(tenant_id, id, content, message_type, flex_content) VALUES (?, ?, ?, ?, ?)",
            template.tenant_id,
            str(template.id),
            template.content,
            template.message_type,
            json.dumps(template.flex_content) if template.flex_content else None,
        )
        return template

    async def get_template(
        self, tenant_id: str, template_id: Identifier
    ) -> MessageTemplate | None:
        row = await self._fetchone(
            "SELECT * FROM message_templates WHERE tenant_id = ? AND id = ?",
            tenant_id,
            str(template_id),
        )
        if not row:
            return None
        return MessageTemplate(
            id=row["id"],
            tenant_id=row["tenant_id"],
            content=row["content"],
            message_type=row["message_type"],
            flex_content=json.loads(row["flex_content"]) if row["flex_content"] else None,
        )

    async def save_rich_menu(self, menu: RichMenu) -> RichMenu:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO rich_menus (tenant_id, id, name, line_rich_menu_id) "
            "VALUES (?, ?, ?, ?)",
            menu.tenant_id,
            str(menu.id),
            menu.name,
            menu.line_rich_menu_id,
        )
        return menu

    async def get_rich_menu(self, tenant_id: str, menu_id: Identifier) -> RichMenu | None:
        row = await self._fetchone(
            "SELECT * FROM rich_menus WHERE tenant_id = ? AND id = ?",
            tenant_id,
            str(menu_id),
        )
        return RichMenu(**dict(row)) if row else None
