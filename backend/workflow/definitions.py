"""Immutable workflow, step and trigger definitions used by the engine.

These are snapshots: the runner receives one ``WorkflowDefinition`` per
run and never mutates it. Persisted rows (``db.models``) and API payloads
(``api.schemas``) are converted into these types before execution.

Plain dict form (as stored in JSON columns and accepted by ``from_dict``):
{
    "id": "wf-1",
    "name": "Invoice follow-up",
    "is_active": true,
    "variables": {"team": "finance"},
    "steps": [
        {
            "id": "notify",
            "name": "Email the client",
            "type": "email",
            "configuration": {"to": "{{triggerData.clientEmail}}", "subject": "..."},
            "timeout_seconds": 30,
            "retry_count": 2,
            "retry_delay_seconds": 10
        }
    ]
}
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from core.constants import RetryBackoff, StepType
from core.exceptions import ConfigurationError

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_DELAY_SECONDS = 30.0


def _frozen(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first key present in ``data`` (snake_case or camelCase)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class StepDefinition:
    """One unit of work within a workflow."""

    id: str
    name: str
    type: StepType
    configuration: Mapping[str, Any] = field(default_factory=dict)
    parameters: Mapping[str, Any] = field(default_factory=dict)
    conditions: Optional[Mapping[str, Any]] = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_count: int = 0
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    retry_backoff: RetryBackoff = RetryBackoff.FIXED

    def __post_init__(self):
        if not self.id:
            raise ConfigurationError("Step id is required")
        if self.retry_count < 0:
            raise ConfigurationError(f"Step {self.id}: retry_count must be >= 0")
        if self.timeout_seconds <= 0:
            raise ConfigurationError(f"Step {self.id}: timeout_seconds must be > 0")
        if self.retry_delay_seconds < 0:
            raise ConfigurationError(f"Step {self.id}: retry_delay_seconds must be >= 0")
        if self.type == StepType.CONDITION and self.conditions is None:
            raise ConfigurationError(f"Condition step {self.id} has no conditions")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StepDefinition":
        """Build a step from its stored/API dict form."""
        raw_type = data.get("type")
        try:
            step_type = StepType(raw_type)
        except ValueError:
            raise ConfigurationError(f"Unknown step type: {raw_type!r}")

        try:
            backoff = RetryBackoff(_first(data, "retry_backoff", "retryBackoff", default="fixed"))
            conditions = data.get("conditions")
            return cls(
                id=str(data.get("id") or ""),
                name=data.get("name") or str(data.get("id") or ""),
                type=step_type,
                configuration=_frozen(_first(data, "configuration", "config", default={})),
                parameters=_frozen(data.get("parameters")),
                conditions=_frozen(conditions) if conditions is not None else None,
                timeout_seconds=float(_first(
                    data, "timeout_seconds", "timeoutSeconds", "timeout",
                    default=DEFAULT_TIMEOUT_SECONDS,
                )),
                retry_count=int(_first(data, "retry_count", "retryCount", default=0)),
                retry_delay_seconds=float(_first(
                    data, "retry_delay_seconds", "retryDelaySeconds", "retryDelay",
                    default=DEFAULT_RETRY_DELAY_SECONDS,
                )),
                retry_backoff=backoff,
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid step definition {data.get('id')!r}: {e}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "configuration": dict(self.configuration),
            "parameters": dict(self.parameters),
            "conditions": dict(self.conditions) if self.conditions is not None else None,
            "timeout_seconds": self.timeout_seconds,
            "retry_count": self.retry_count,
            "retry_delay_seconds": self.retry_delay_seconds,
            "retry_backoff": self.retry_backoff.value,
        }


@dataclass(frozen=True)
class WorkflowDefinition:
    """Immutable workflow template: ordered steps plus variable defaults."""

    id: str
    name: str
    is_active: bool = True
    steps: tuple[StepDefinition, ...] = ()
    variables: Mapping[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None

    def __post_init__(self):
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ConfigurationError(
                    f"Workflow {self.id}: duplicate step id {step.id!r}"
                )
            seen.add(step.id)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowDefinition":
        steps = tuple(StepDefinition.from_dict(s) for s in data.get("steps") or [])
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            is_active=bool(_first(data, "is_active", "isActive", default=True)),
            steps=steps,
            variables=_frozen(data.get("variables")),
            owner_id=_first(data, "owner_id", "ownerId", "userId"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "steps": [s.to_dict() for s in self.steps],
            "variables": dict(self.variables),
            "owner_id": self.owner_id,
        }


@dataclass(frozen=True)
class TriggerDefinition:
    """Rule binding an event type plus conditions to a workflow."""

    id: str
    workflow_id: str
    event_type: str
    is_active: bool = True
    conditions: Mapping[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TriggerDefinition":
        event_type = _first(data, "event_type", "eventType")
        if not event_type:
            raise ConfigurationError(f"Trigger {data.get('id')!r} has no event type")
        return cls(
            id=str(data.get("id") or ""),
            workflow_id=str(_first(data, "workflow_id", "workflowId", default="")),
            event_type=event_type,
            is_active=bool(_first(data, "is_active", "isActive", default=True)),
            conditions=_frozen(data.get("conditions")),
            owner_id=_first(data, "owner_id", "ownerId", "userId"),
        )
