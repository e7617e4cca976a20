"""Handlers that change patient tags and marks."""

from __future__ import annotations

from typing import Any, Mapping

from ..contracts import AddTagConfig, MarkChangeConfig, RemoveTagConfig, StepOutcome
from ..errors import DependencyError
from .base import StepServices, require_context


async def add_tag(
    config: AddTagConfig,
    context: Mapping[str, Any],
    tenant_id: str,
    services: StepServices,
) -> StepOutcome:
    patient_id = require_context(context, "patient_id", "cannot add tag")
    try:
        await services.tags.add_tag(tenant_id, patient_id, config.tag_id)
    except Exception as e:
        raise DependencyError(f"add tag failed: {e}") from e
    return StepOutcome.ok(f"tag added: {config.tag_name or config.tag_id}")


async def remove_tag(
    config: RemoveTagConfig,
    context: Mapping[str, Any],
    tenant_id: str,
    services: StepServices,
) -> StepOutcome:
    patient_id = require_context(context, "patient_id", "cannot remove tag")
    try:
        await services.tags.remove_tag(tenant_id, patient_id, config.tag_id)
    except Exception as e:
        raise DependencyError(f"remove tag failed: {e}") from e
    return StepOutcome.ok(f"tag removed: {config.tag_name or config.tag_id}")


async def mark_change(
    config: MarkChangeConfig,
    context: Mapping[str, Any],
    tenant_id: str,
    services: StepServices,
) -> StepOutcome:
    patient_id = require_context(context, "patient_id", "cannot change mark")
    try:
        await services.marks.set_mark(tenant_id, patient_id, config.mark, config.note)
    except Exception as e:
        raise DependencyError(f"mark change failed: {e}") from e
    return StepOutcome.ok(f"mark set: {config.mark}")
