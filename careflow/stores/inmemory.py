"""In-memory patient store for tests and dry runs."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Optional, Set, Tuple

from .base import Identifier, MessageTemplate, PatientMark, RichMenu


class InMemoryPatientStore:
    """Implements the tag, mark, template and rich menu stores in memory."""

    def __init__(self) -> None:
        self._tags: Dict[Tuple[str, str], Set[str]] = defaultdict(set)
        self._marks: Dict[Tuple[str, str], PatientMark] = {}
        self._templates: Dict[Tuple[str, str], MessageTemplate] = {}
        self._rich_menus: Dict[Tuple[str, str], RichMenu] = {}

    # Tag store ---------------------------------------------------------
    async def add_tag(self, tenant_id: str, patient_id: str, tag_id: Identifier) -> None:
        self._tags[(tenant_id, patient_id)].add(str(tag_id))

    async def remove_tag(self, tenant_id: str, patient_id: str, tag_id: Identifier) -> None:
        self._tags[(tenant_id, patient_id)].discard(str(tag_id))

    async def list_tags(self, tenant_id: str, patient_id: str) -> list[str]:
        return sorted(self._tags.get((tenant_id, patient_id), ()))

    # Mark store --------------------------------------------------------
    async def set_mark(
        self, tenant_id: str, patient_id: str, mark: str, note: Optional[str] = None
    ) -> None:
        self._marks[(tenant_id, patient_id)] = PatientMark(
            patient_id=patient_id, mark=mark, note=note
        )

    async def get_mark(self, tenant_id: str, patient_id: str) -> PatientMark | None:
        return self._marks.get((tenant_id, patient_id))

    # Templates and rich menus -----------------------------------------
    async def save_template(self, template: MessageTemplate) -> MessageTemplate:
        self._templates[(template.tenant_id, str(template.id))] = template
        return template

    async def get_template(
        self, tenant_id: str, template_id: Identifier
    ) -> MessageTemplate | None:
        return self._templates.get((tenant_id, str(template_id)))

    async def save_rich_menu(self, menu: RichMenu) -> RichMenu:
        self._rich_menus[(menu.tenant_id, str(menu.id))] = menu
        return menu

    async def get_rich_menu(self, tenant_id: str, menu_id: Identifier) -> RichMenu | None:
        return self._rich_menus.get((tenant_id, str(menu_id)))
