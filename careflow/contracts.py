"""Core contracts shared by the runner, step handlers and collaborators."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import ConfigurationError


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"
    ARCHIVED = "archived"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED}
)


class TriggerType(str, Enum):
    """Events known to fire workflows. Producers may use other strings."""

    RESERVATION_COMPLETED = "reservation_completed"
    PAYMENT_COMPLETED = "payment_completed"
    TAG_ADDED = "tag_added"
    FORM_SUBMITTED = "form_submitted"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class StepType(str, Enum):
    SEND_MESSAGE = "send_message"
    WAIT = "wait"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    MARK_CHANGE = "mark_change"
    SWITCH_RICHMENU = "switch_richmenu"
    WEBHOOK = "webhook"


# ---------------------------------------------------------------------------
# Step configuration variants


class SendMessageConfig(BaseModel):
    step_type: Literal["send_message"] = "send_message"
    message_type: Literal["text", "template"] = "text"
    text: Optional[str] = None
    template_id: Optional[Union[int, str]] = None


class WaitConfig(BaseModel):
    step_type: Literal["wait"] = "wait"
    duration_minutes: float = Field(default=0, ge=0)


class AddTagConfig(BaseModel):
    step_type: Literal["add_tag"] = "add_tag"
    tag_id: Union[int, str]
    tag_name: Optional[str] = None


class RemoveTagConfig(BaseModel):
    step_type: Literal["remove_tag"] = "remove_tag"
    tag_id: Union[int, str]
    tag_name: Optional[str] = None


class MarkChangeConfig(BaseModel):
    step_type: Literal["mark_change"] = "mark_change"
    mark: str = Field(min_length=1)
    note: Optional[str] = None


class SwitchRichMenuConfig(BaseModel):
    step_type: Literal["switch_richmenu"] = "switch_richmenu"
    menu_id: Union[int, str]


class WebhookConfig(BaseModel):
    step_type: Literal["webhook"] = "webhook"
    url: str = Field(min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)


StepConfig = Annotated[
    Union[
        SendMessageConfig,
        WaitConfig,
        AddTagConfig,
        RemoveTagConfig,
        MarkChangeConfig,
        SwitchRichMenuConfig,
        WebhookConfig,
    ],
    Field(discriminator="step_type"),
]

_STEP_CONFIG_ADAPTER: TypeAdapter = TypeAdapter(StepConfig)
_KNOWN_STEP_TYPES = {t.value for t in StepType}


def parse_step_config(step_type: str, raw: Optional[Dict[str, Any]]) -> Optional[BaseModel]:
    """Validate ``raw`` against the variant for ``step_type``.

    Returns ``None`` for step types this engine does not know, so rows written
    by newer authoring tools still load.

    Raises:
        ConfigurationError: If the config does not fit its variant.
    """
    if step_type not in _KNOWN_STEP_TYPES:
        return None
    data = dict(raw or {})
    data["step_type"] = step_type
    try:
        return _STEP_CONFIG_ADAPTER.validate_python(data)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(p) for p in err["loc"][1:]) or step_type for err in e.errors()
        )
        raise ConfigurationError(f"invalid {step_type} config: {fields}") from e


# ---------------------------------------------------------------------------
# Messaging


class OutboundMessage(BaseModel):
    """A single message handed to the transport."""

    type: Literal["text", "flex"] = "text"
    text: Optional[str] = None
    alt_text: Optional[str] = None
    contents: Optional[Dict[str, Any]] = None


class SendResult(BaseModel):
    ok: bool
    detail: Optional[str] = None


# ---------------------------------------------------------------------------
# Results


class StepOutcome(BaseModel):
    """Result of a single step handler call."""

    success: bool
    detail: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, detail: Optional[str] = None) -> "StepOutcome":
        return cls(success=True, detail=detail)

    @classmethod
    def fail(cls, error: str) -> "StepOutcome":
        return cls(success=False, error=error)


class ExecutionResult(BaseModel):
    """What callers of the runner receive for one run."""

    execution_id: str = ""
    status: ExecutionStatus
    steps_executed: int = 0
    steps_total: int = 0
    error: Optional[str] = None


class SweepReport(BaseModel):
    """Summary of one resume sweep."""

    resumed: int = 0
    skipped: int = 0
    lost_claims: int = 0
    results: List[ExecutionResult] = Field(default_factory=list)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "WorkflowStatus",
    "ExecutionStatus",
    "TERMINAL_STATUSES",
    "TriggerType",
    "StepType",
    "SendMessageConfig",
    "WaitConfig",
    "AddTagConfig",
    "RemoveTagConfig",
    "MarkChangeConfig",
    "SwitchRichMenuConfig",
    "WebhookConfig",
    "StepConfig",
    "parse_step_config",
    "OutboundMessage",
    "SendResult",
    "StepOutcome",
    "ExecutionResult",
    "SweepReport",
    "utcnow",
]
