"""Shared pieces for step handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from ..contracts import StepOutcome
from ..errors import DependencyError
from ..stores.base import MarkStore, RichMenuStore, TagStore, TemplateStore
from ..transports.base import BaseTransport


@dataclass
class StepServices:
    """Collaborators a handler may call."""

    transport: BaseTransport
    tags: TagStore
    marks: MarkStore
    templates: TemplateStore
    rich_menus: RichMenuStore
    webhook_timeout: float = 10.0


Handler = Callable[[Any, Mapping[str, Any], str, StepServices], Awaitable[StepOutcome]]


def require_context(context: Mapping[str, Any], key: str, what: str) -> str:
    """Return ``context[key]`` as a string or raise ``DependencyError``."""
    value = context.get(key)
    if value is None or value == "":
        raise DependencyError(f"{what}: {key} missing from trigger context")
    return str(value)
