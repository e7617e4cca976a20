"""careflow: tenant-scoped workflow automation with durable pause and resume."""

from .contracts import (
    ExecutionResult,
    ExecutionStatus,
    StepType,
    TriggerType,
    WorkflowStatus,
)
from .engine import AutomationEngine, build_engine, create_engine
from .errors import CareflowError, ConfigurationError, DependencyError, PersistenceError
from .persistence import get_repository
from .runner import ExecutionRunner
from .scheduler import ResumeScheduler
from .transports import get_transport
from .triggers import TriggerMatcher

__version__ = "0.1.0"
__all__ = [
    "AutomationEngine",
    "ExecutionRunner",
    "TriggerMatcher",
    "ResumeScheduler",
    "ExecutionResult",
    "ExecutionStatus",
    "StepType",
    "TriggerType",
    "WorkflowStatus",
    "CareflowError",
    "ConfigurationError",
    "DependencyError",
    "PersistenceError",
    "build_engine",
    "create_engine",
    "get_repository",
    "get_transport",
]
