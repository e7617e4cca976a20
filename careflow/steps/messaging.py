"""Handlers that talk to the patient through the message transport."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..contracts import (
    OutboundMessage,
    SendMessageConfig,
    SendResult,
    StepOutcome,
    SwitchRichMenuConfig,
)
from ..errors import ConfigurationError, DependencyError
from .base import StepServices, require_context

logger = logging.getLogger(__name__)


def render_text(text: str, context: Mapping[str, Any]) -> str:
    """Substitute ``{name}`` and ``{patient_id}`` from the trigger context.

    Missing values become empty strings.
    """
    return text.replace("{name}", str(context.get("patient_name") or "")).replace(
        "{patient_id}", str(context.get("patient_id") or "")
    )


async def _build_messages(
    config: SendMessageConfig,
    context: Mapping[str, Any],
    tenant_id: str,
    services: StepServices,
) -> list[OutboundMessage]:
    if config.message_type == "template" and config.template_id is not None:
        template = await services.templates.get_template(tenant_id, config.template_id)
        if template is None:
            raise DependencyError(f"template {config.template_id} not found")
        if template.message_type == "flex" and template.flex_content:
            return [
                OutboundMessage(
                    type="flex",
                    alt_text=template.content or "message",
                    contents=template.flex_content,
                )
            ]
        return [OutboundMessage(text=render_text(template.content, context))]
    if config.text:
        return [OutboundMessage(text=render_text(config.text, context))]
    raise ConfigurationError("send_message has neither text nor template")


def _check(result: SendResult, action: str) -> None:
    if not result.ok:
        raise DependencyError(f"{action} failed: {result.detail or 'transport refused'}")


async def send_message(
    config: SendMessageConfig,
    context: Mapping[str, Any],
    tenant_id: str,
    services: StepServices,
) -> StepOutcome:
    recipient = require_context(context, "line_user_id", "no recipient")
    messages = await _build_messages(config, context, tenant_id, services)
    try:
        result = await services.transport.send(recipient, messages, tenant_id)
    except Exception as e:
        raise DependencyError(f"message delivery failed: {e}") from e
    _check(result, "message delivery")
    logger.debug(f"Sent {len(messages)} message(s) to {recipient} for tenant={tenant_id}")
    return StepOutcome.ok("message sent")


async def switch_richmenu(
    config: SwitchRichMenuConfig,
    context: Mapping[str, Any],
    tenant_id: str,
    services: StepServices,
) -> StepOutcome:
    recipient = require_context(context, "line_user_id", "no recipient")
    menu = await services.rich_menus.get_rich_menu(tenant_id, config.menu_id)
    if menu is None or not menu.line_rich_menu_id:
        raise DependencyError(f"rich menu {config.menu_id} not found")
    try:
        result = await services.transport.link_rich_menu(
            recipient, menu.line_rich_menu_id, tenant_id
        )
    except Exception as e:
        raise DependencyError(f"rich menu switch failed: {e}") from e
    _check(result, "rich menu switch")
    return StepOutcome.ok(f"rich menu switched: {menu.name or config.menu_id}")
