"""Shared fixtures for careflow tests."""

from typing import Any, Iterable, Optional, Tuple

import pytest

import careflow.persistence as persistence
from careflow.config import CareflowConfig, EngineConfig
from careflow.contracts import WorkflowStatus
from careflow.engine import create_engine
from careflow.persistence import InMemoryWorkflowRepository
from careflow.persistence.models import Workflow, WorkflowStep
from careflow.steps import StepServices
from careflow.stores import InMemoryPatientStore
from careflow.transports import InMemoryTransport

TENANT = "clinic-1"
OTHER_TENANT = "clinic-2"
CONTEXT = {"patient_id": "p-001", "line_user_id": "U1234", "patient_name": "Hanako"}


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from real configuration and the shared repository."""
    for name in ("CAREFLOW_DATABASE_URL", "DATABASE_URL", "CAREFLOW_TRANSPORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CAREFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setattr(persistence, "_repository_instance", None)


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def patient_store() -> InMemoryPatientStore:
    return InMemoryPatientStore()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def services(transport, patient_store) -> StepServices:
    return StepServices(
        transport=transport,
        tags=patient_store,
        marks=patient_store,
        templates=patient_store,
        rich_menus=patient_store,
    )


@pytest.fixture
def engine(repository, transport, patient_store):
    config = CareflowConfig(engine=EngineConfig(step_timeout=2.0))
    return create_engine(repository, transport, patient_store, config=config)


@pytest.fixture
def build_workflow(repository):
    """Return a coroutine function that saves a workflow and its steps."""

    async def _build(
        steps: Iterable[Tuple[str, dict[str, Any]]],
        tenant_id: str = TENANT,
        trigger_type: str = "reservation_completed",
        trigger_config: Optional[dict[str, Any]] = None,
        status: WorkflowStatus = WorkflowStatus.ACTIVE,
        name: str = "follow-up",
    ) -> Workflow:
        workflow = Workflow(
            tenant_id=tenant_id,
            name=name,
            status=status,
            trigger_type=trigger_type,
            trigger_config=trigger_config,
        )
        await repository.save_workflow(workflow)
        for index, (step_type, config) in enumerate(steps):
            await repository.save_step(
                WorkflowStep(
                    workflow_id=workflow.id,
                    sort_order=index,
                    step_type=step_type,
                    config=config,
                )
            )
        return workflow

    return _build
