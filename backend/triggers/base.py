"""Trigger firing records exchanged between the evaluator and the engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TriggerEvent:
    """Represents a single trigger firing event.

    This is the payload that gets passed from a matched trigger
    to the workflow runner (as ``triggerData``).
    """

    trigger_id: str
    workflow_id: str
    event_type: str
    actor_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class TriggerResult:
    """Outcome of firing one trigger."""

    success: bool
    message: str
    trigger_id: str
    workflow_id: str
    execution_id: Optional[str] = None
    error: Optional[str] = None
