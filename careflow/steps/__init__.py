"""Step handler registry.

Every configuration variant in :data:`careflow.contracts.StepConfig` except
``WaitConfig`` must map to exactly one handler; ``wait`` is a control signal
consumed by the runner. The check below fails at import time when a variant
is added without a handler.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, get_args

from pydantic import BaseModel

from ..contracts import (
    AddTagConfig,
    MarkChangeConfig,
    RemoveTagConfig,
    SendMessageConfig,
    StepConfig,
    StepOutcome,
    SwitchRichMenuConfig,
    WaitConfig,
    WebhookConfig,
)
from ..errors import ConfigurationError
from .base import Handler, StepServices, require_context
from .messaging import render_text, send_message, switch_richmenu
from .patients import add_tag, mark_change, remove_tag
from .webhook import send_webhook

HANDLERS: dict[type, Handler] = {
    SendMessageConfig: send_message,
    AddTagConfig: add_tag,
    RemoveTagConfig: remove_tag,
    MarkChangeConfig: mark_change,
    SwitchRichMenuConfig: switch_richmenu,
    WebhookConfig: send_webhook,
}

_VARIANTS = set(get_args(get_args(StepConfig)[0]))
_missing = _VARIANTS - set(HANDLERS) - {WaitConfig}
if _missing:  # pragma: no cover - guards future variants
    raise RuntimeError(
        f"no step handler for: {', '.join(sorted(c.__name__ for c in _missing))}"
    )


async def unknown_step(step_type: str) -> StepOutcome:
    """Default handler for step types this engine does not implement."""
    raise ConfigurationError(f"unknown step type: {step_type}")


async def dispatch(
    step_type: str,
    config: Optional[BaseModel],
    context: Mapping[str, Any],
    tenant_id: str,
    services: StepServices,
) -> StepOutcome:
    """Run the handler for ``config``.

    ``config`` is the parsed variant, or ``None`` when ``step_type`` is not
    known. Handler failures propagate as exceptions.
    """
    if config is None:
        return await unknown_step(step_type)
    handler = HANDLERS.get(type(config))
    if handler is None:
        raise ConfigurationError(f"step type {step_type} cannot be dispatched")
    return await handler(config, context, tenant_id, services)


__all__ = [
    "HANDLERS",
    "StepServices",
    "dispatch",
    "render_text",
    "require_context",
    "unknown_step",
]
