"""Patient-side collaborators consumed by step handlers."""

from __future__ import annotations

from typing import Any, Literal, Optional, Protocol, Union

from pydantic import BaseModel

Identifier = Union[int, str]


class MessageTemplate(BaseModel):
    id: Identifier
    tenant_id: str
    content: str = ""
    message_type: Literal["text", "flex"] = "text"
    flex_content: Optional[dict[str, Any]] = None


class RichMenu(BaseModel):
    id: Identifier
    tenant_id: str
    name: str = ""
    line_rich_menu_id: Optional[str] = None


class PatientMark(BaseModel):
    patient_id: str
    mark: str
    note: Optional[str] = None
    updated_by: str = "workflow"


class TagStore(Protocol):
    async def add_tag(self, tenant_id: str, patient_id: str, tag_id: Identifier) -> None:
        """Attach a tag to a patient. Adding an existing tag is a no-op."""

    async def remove_tag(self, tenant_id: str, patient_id: str, tag_id: Identifier) -> None:
        """Detach a tag from a patient."""

    async def list_tags(self, tenant_id: str, patient_id: str) -> list[str]:
        """Return the patient's tag ids as strings."""


class MarkStore(Protocol):
    async def set_mark(
        self, tenant_id: str, patient_id: str, mark: str, note: Optional[str] = None
    ) -> None:
        """Set the patient's single status mark, replacing any previous one."""

    async def get_mark(self, tenant_id: str, patient_id: str) -> PatientMark | None:
        """Return the patient's current mark."""


class TemplateStore(Protocol):
    async def get_template(
        self, tenant_id: str, template_id: Identifier
    ) -> MessageTemplate | None:
        """Return a message template owned by the tenant."""


class RichMenuStore(Protocol):
    async def get_rich_menu(self, tenant_id: str, menu_id: Identifier) -> RichMenu | None:
        """Return a rich menu owned by the tenant."""
