"""Resume sweep for executions parked on a ``wait`` step."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from .constants import DEFAULT_SWEEP_BATCH_SIZE
from .contracts import ExecutionResult, ExecutionStatus, SweepReport, utcnow
from .errors import CareflowError
from .persistence import WorkflowRepository
from .persistence.models import WorkflowExecution
from .runner import ExecutionRunner
from .utils import retry

logger = logging.getLogger(__name__)


class ResumeScheduler:
    """Finds due ``waiting`` executions and continues them.

    Each execution is claimed with a conditional ``waiting -> running``
    update before the runner is invoked, so concurrent sweepers never resume
    the same execution twice.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        runner: ExecutionRunner,
        batch_size: int = DEFAULT_SWEEP_BATCH_SIZE,
    ) -> None:
        self._repository = repository
        self._runner = runner
        self._batch_size = batch_size

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Resume every execution whose ``resume_at`` is at or before ``now``.

        Raises:
            PersistenceError: If the due executions cannot be listed.
        """
        now = now or utcnow()
        report = SweepReport()
        due = await self._repository.list_waiting_executions(now, limit=self._batch_size)
        for execution in due:
            try:
                await self._resume(execution, report)
            except CareflowError as e:
                logger.error(f"Could not resume execution {execution.id}: {e}")
        if due:
            logger.info(
                f"Sweep resumed={report.resumed} skipped={report.skipped} "
                f"lost_claims={report.lost_claims}"
            )
        return report

    async def _resume(self, execution: WorkflowExecution, report: SweepReport) -> None:
        try:
            workflow = await self._repository.get_workflow(
                execution.workflow_id, execution.tenant_id
            )
        except CareflowError as e:
            logger.warning(f"Leaving execution {execution.id} parked: {e}")
            return

        if workflow is None or not workflow.is_active:
            cancelled = await self._repository.update_execution(
                execution.id,
                execution.tenant_id,
                {
                    "status": ExecutionStatus.SKIPPED,
                    "resume_at": None,
                    "completed_at": utcnow(),
                    "error": "workflow deactivated before resume",
                },
                expected_status=ExecutionStatus.WAITING,
            )
            if cancelled:
                logger.info(f"Execution {execution.id} skipped: workflow no longer active")
                report.skipped += 1
            else:
                report.lost_claims += 1
            return

        if not await self._repository.claim_execution(execution.id, execution.tenant_id):
            logger.debug(f"Execution {execution.id} already claimed by another sweeper")
            report.lost_claims += 1
            return

        try:
            result = await self._runner.execute(
                execution.workflow_id,
                execution.trigger_context,
                execution.tenant_id,
                resume_from_index=execution.current_step_index,
                execution_id=execution.id,
            )
        except Exception as e:
            logger.exception(f"Resuming execution {execution.id} crashed")
            try:
                await self._repository.update_execution(
                    execution.id,
                    execution.tenant_id,
                    {"status": ExecutionStatus.FAILED, "completed_at": utcnow(), "error": str(e)},
                )
            except CareflowError as update_error:
                logger.error(f"Could not mark execution {execution.id} failed: {update_error}")
            result = ExecutionResult(
                execution_id=execution.id, status=ExecutionStatus.FAILED, error=str(e)
            )
        report.resumed += 1
        report.results.append(result)

    async def run(self, interval: float, lifespan: Optional[float] = None) -> int:
        """Sweep every ``interval`` seconds.

        Args:
            interval: Seconds between sweeps.
            lifespan: Maximum time in seconds to keep sweeping. If None, runs
                indefinitely.

        Returns:
            Number of sweeps completed.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        sweeps = 0
        failures = 0

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break
            try:
                await self.sweep()
            except CareflowError as e:
                failures += 1
                logger.error(f"Sweep failed ({failures} in a row): {e}")
                await retry.sleep_backoff(failures, cap=interval)
                continue
            failures = 0
            sweeps += 1
            await asyncio.sleep(interval)
        return sweeps
