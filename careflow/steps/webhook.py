"""Outbound webhook step."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import requests

from ..contracts import StepOutcome, WebhookConfig, utcnow
from ..errors import DependencyError
from .base import StepServices


def _post(url: str, payload: dict, headers: dict, timeout: float) -> requests.Response:
    return requests.post(
        url,
        json=payload,
        headers={"Content-Type": "application/json", **headers},
        timeout=timeout,
    )


async def send_webhook(
    config: WebhookConfig,
    context: Mapping[str, Any],
    tenant_id: str,
    services: StepServices,
) -> StepOutcome:
    payload = {
        "event": "workflow_webhook",
        "tenant_id": tenant_id,
        "trigger_data": dict(context),
        "timestamp": utcnow().isoformat(),
    }
    try:
        response = await asyncio.to_thread(
            _post, config.url, payload, config.headers, services.webhook_timeout
        )
    except requests.RequestException as e:
        raise DependencyError(f"webhook request failed: {e}") from e
    if not response.ok:
        raise DependencyError(
            f"webhook responded {response.status_code} {response.reason}"
        )
    return StepOutcome.ok(f"webhook delivered: {config.url}")
