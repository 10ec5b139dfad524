"""Workflow schemas.

Steps are a tagged union discriminated by ``type``: each step type has
its own configuration model, so a malformed step is rejected when the
workflow is saved rather than when it runs. Values may still be
``{{placeholders}}``, which are resolved at run time.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.constants import NotificationPriority, RetryBackoff
from core.exceptions import ConfigurationError, ValidationError
from workflow.conditions import ConditionEvaluator
from workflow.executor import parse_duration


def _is_placeholder(value: Any) -> bool:
    return isinstance(value, str) and "{{" in value


# ─── Per-type configuration ──────────────────────────────────────

class _StepConfigBase(BaseModel):
    # Unknown keys are passed through to the collaborator untouched
    model_config = ConfigDict(extra="allow")


class EmailStepConfig(_StepConfigBase):
    to: Union[str, List[str]] = Field(description="Recipient address(es)")
    subject: str = Field(default="", description="Subject line")
    body: Optional[str] = Field(default=None, description="Plain-text body")
    template: Optional[str] = Field(default=None, description="Template name")
    templateData: Optional[Dict[str, Any]] = Field(default=None, description="Template values")

    @field_validator("to")
    @classmethod
    def _recipients(cls, value):
        if not value:
            raise ValueError("at least one recipient is required")
        return value


class WebhookStepConfig(_StepConfigBase):
    url: str = Field(min_length=1, description="Target URL")
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = Field(default=None, description="Merged over the default execution payload")
    timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("method", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator("url")
    @classmethod
    def _scheme(cls, value: str) -> str:
        if not _is_placeholder(value) and not value.lower().startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value


class NotificationStepConfig(_StepConfigBase):
    title: str = ""
    message: str = ""
    user_id: Optional[str] = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    data: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _has_text(self):
        if not self.title and not self.message:
            raise ValueError("title or message is required")
        return self


class GptStepConfig(_StepConfigBase):
    query: Optional[str] = None
    prompt: Optional[str] = None
    analysis_type: str = "general"
    context: Optional[Any] = None

    @model_validator(mode="after")
    def _has_query(self):
        if not self.query and not self.prompt:
            raise ValueError("query or prompt is required")
        return self


class DelayStepConfig(_StepConfigBase):
    duration: Optional[Union[float, str]] = Field(
        default=None, description="Seconds, or text like '5 minutes'"
    )
    seconds: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _has_duration(self):
        if self.duration is None and self.seconds is None:
            raise ValueError("duration or seconds is required")
        if self.duration is not None and not _is_placeholder(self.duration):
            try:
                parse_duration(self.duration)
            except ValidationError as e:
                raise ValueError(e.message)
        return self


class ActionStepConfig(_StepConfigBase):
    actionType: str = Field(min_length=1, description="Registered action handler")


# ─── Steps ───────────────────────────────────────────────────────

class _StepBase(BaseModel):
    id: str = Field(min_length=1, description="Step id, unique within the workflow")
    name: str = Field(default="", description="Human-readable step name")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    conditions: Optional[Dict[str, Any]] = Field(
        default=None, description="Guard: the step is skipped when these are false"
    )
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    retry_count: int = Field(default=0, ge=0)
    retry_delay_seconds: Optional[float] = Field(default=None, ge=0)
    retry_backoff: RetryBackoff = RetryBackoff.FIXED

    @field_validator("conditions")
    @classmethod
    def _known_operators(cls, value):
        for field_path, rule in (value or {}).items():
            try:
                ConditionEvaluator.normalize(field_path, rule)
            except ConfigurationError as e:
                raise ValueError(e.message)
        return value


class EmailStep(_StepBase):
    type: Literal["email"]
    configuration: EmailStepConfig


class WebhookStep(_StepBase):
    type: Literal["webhook"]
    configuration: WebhookStepConfig


class NotificationStep(_StepBase):
    type: Literal["notification"]
    configuration: NotificationStepConfig


class GptStep(_StepBase):
    type: Literal["gpt"]
    configuration: GptStepConfig


class DelayStep(_StepBase):
    type: Literal["delay"]
    configuration: DelayStepConfig


class ActionStep(_StepBase):
    type: Literal["action"]
    configuration: ActionStepConfig


class ConditionStep(_StepBase):
    type: Literal["condition"]
    configuration: Dict[str, Any] = Field(default_factory=dict)
    conditions: Dict[str, Any] = Field(description="Evaluated against the execution context")


StepConfig = Annotated[
    Union[EmailStep, WebhookStep, NotificationStep, GptStep, DelayStep, ActionStep, ConditionStep],
    Field(discriminator="type"),
]


def steps_to_dicts(steps: List[StepConfig]) -> List[dict]:
    """Dump validated steps into the dict form the service layer stores."""
    return [step.model_dump(mode="json", exclude_none=True) for step in steps]


# ─── Workflows ───────────────────────────────────────────────────

class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    name: str = Field(min_length=1, description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    is_active: bool = Field(default=True, description="Inactive workflows never run")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Variable defaults")
    steps: List[StepConfig] = Field(default_factory=list, description="Ordered steps")


class WorkflowUpdate(BaseModel):
    """Request to update a workflow. ``steps`` and ``variables`` replace the current ones."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    variables: Optional[Dict[str, Any]] = None
    steps: Optional[List[StepConfig]] = None


class WorkflowStepResponse(BaseModel):
    id: str
    name: str
    type: str
    configuration: Dict[str, Any]
    parameters: Dict[str, Any]
    conditions: Optional[Dict[str, Any]] = None
    timeout_seconds: float
    retry_count: int
    retry_delay_seconds: float
    retry_backoff: str


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    id: str = Field(description="Workflow ID")
    name: str = Field(description="Workflow name")
    description: str = Field(description="Workflow description")
    is_active: bool = Field(description="Whether the workflow may run")
    variables: Dict[str, Any] = Field(description="Variable defaults")
    version: int = Field(description="Workflow version number")
    owner_id: Optional[str] = Field(default=None, description="Actor who created the workflow")
    steps: List[WorkflowStepResponse] = Field(description="Ordered steps")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")


class WorkflowListResponse(BaseModel):
    """Paginated list of workflows."""

    workflows: List[WorkflowResponse] = Field(description="List of workflows")
    total: int = Field(description="Total number of workflows")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")
