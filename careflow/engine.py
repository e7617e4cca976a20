"""Wiring of repository, stores, transport and the three engine services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .config import CareflowConfig, load_config
from .contracts import ExecutionResult, SweepReport
from .persistence import WorkflowRepository, get_repository
from .runner import ExecutionRunner
from .scheduler import ResumeScheduler
from .steps import StepServices
from .stores import get_patient_store
from .transports import BaseTransport, get_transport
from .triggers import TriggerMatcher


@dataclass
class AutomationEngine:
    """Entry point for event producers and the periodic resume caller."""

    repository: WorkflowRepository
    runner: ExecutionRunner
    matcher: TriggerMatcher
    scheduler: ResumeScheduler
    transport: BaseTransport

    async def fire_trigger(
        self, trigger_type: str, context: Mapping[str, Any], tenant_id: str
    ) -> list[ExecutionResult]:
        return await self.matcher.fire_trigger(trigger_type, context, tenant_id)

    async def execute(
        self,
        workflow_id: str,
        context: Mapping[str, Any],
        tenant_id: str,
        resume_from_index: int = 0,
        execution_id: Optional[str] = None,
    ) -> ExecutionResult:
        return await self.runner.execute(
            workflow_id, context, tenant_id, resume_from_index, execution_id
        )

    async def sweep(self) -> SweepReport:
        return await self.scheduler.sweep()


def create_engine(
    repository: WorkflowRepository,
    transport: BaseTransport,
    patient_store: Any,
    config: Optional[CareflowConfig] = None,
) -> AutomationEngine:
    """Assemble an engine from explicit collaborators.

    ``patient_store`` must implement the tag, mark, template and rich menu
    store protocols.
    """
    engine_conf = (config or CareflowConfig()).engine
    services = StepServices(
        transport=transport,
        tags=patient_store,
        marks=patient_store,
        templates=patient_store,
        rich_menus=patient_store,
        webhook_timeout=engine_conf.webhook_timeout,
    )
    runner = ExecutionRunner(repository, services, step_timeout=engine_conf.step_timeout)
    return AutomationEngine(
        repository=repository,
        runner=runner,
        matcher=TriggerMatcher(repository, runner),
        scheduler=ResumeScheduler(repository, runner, batch_size=engine_conf.sweep_batch_size),
        transport=transport,
    )


def build_engine(config: Optional[CareflowConfig] = None) -> AutomationEngine:
    """Build an engine from configuration.

    Without ``config`` the shared repository from ``get_repository`` is used
    and everything else comes from ``load_config``.
    """
    repository = get_repository(config=config)
    config = config or load_config()
    return create_engine(
        repository=repository,
        transport=get_transport(config=config),
        patient_store=get_patient_store(config=config),
        config=config,
    )
