"""Trigger matching: fan an event out to the workflows subscribed to it."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from .contracts import ExecutionResult, ExecutionStatus, WorkflowStatus
from .errors import CareflowError
from .persistence import WorkflowRepository
from .runner import ExecutionRunner

logger = logging.getLogger(__name__)

_MISSING = object()


def matches_trigger_config(
    trigger_config: Optional[Mapping[str, Any]], context: Mapping[str, Any]
) -> bool:
    """Return ``True`` when every configured key equals the context value.

    An empty or missing config matches everything. A key absent from the
    context never matches. Values must also share a type: ``1`` never matches
    ``True`` or ``1.0``.
    """
    if not trigger_config:
        return True
    for key, expected in trigger_config.items():
        actual = context.get(key, _MISSING)
        if type(actual) is not type(expected) or actual != expected:
            return False
    return True


class TriggerMatcher:
    """Finds active workflows for an event and runs each match."""

    def __init__(self, repository: WorkflowRepository, runner: ExecutionRunner) -> None:
        self._repository = repository
        self._runner = runner

    async def fire_trigger(
        self, trigger_type: str, context: Mapping[str, Any], tenant_id: str
    ) -> list[ExecutionResult]:
        """Run every active workflow of ``tenant_id`` listening for ``trigger_type``.

        Results follow the order the repository returned the workflows in.
        Store errors yield an empty list rather than an exception.
        """
        trigger_type = getattr(trigger_type, "value", trigger_type)
        try:
            workflows = await self._repository.list_workflows(
                tenant_id, trigger_type=trigger_type, status=WorkflowStatus.ACTIVE
            )
        except CareflowError as e:
            logger.error(
                f"Could not load workflows for trigger={trigger_type} tenant={tenant_id}: {e}"
            )
            return []

        results: list[ExecutionResult] = []
        for wf in workflows:
            if not matches_trigger_config(wf.trigger_config, context):
                continue
            try:
                result = await self._runner.execute(wf.id, context, tenant_id)
            except Exception as e:
                logger.exception(f"Workflow {wf.id} crashed on trigger={trigger_type}")
                result = ExecutionResult(status=ExecutionStatus.FAILED, error=str(e))
            results.append(result)

        logger.info(
            f"Trigger {trigger_type} for tenant={tenant_id} ran {len(results)} "
            f"of {len(workflows)} candidate workflow(s)"
        )
        return results
