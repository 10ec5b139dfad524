"""Interfaces the engine consumes from the rest of the application.

The engine never imports the database, SMTP, HTTP or AI layers directly.
It receives implementations of these interfaces at construction time
(see ``services.engine_adapters.build_workflow_engine`` for the production wiring).

Delivery collaborators raise ``TransientError`` for failures worth
retrying and ``ValidationError`` for failures that are not.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from tasks.registry import ActionRegistry
from workflow.definitions import TriggerDefinition, WorkflowDefinition


# ─── Storage ──────────────────────────────────────────────────

class WorkflowStore(ABC):
    """Read access to workflow and trigger definitions."""

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """Return a snapshot of the workflow.

        Raises:
            NotFoundError: if no such workflow exists.
        """
        ...

    @abstractmethod
    async def get_triggers(self, event_type: str) -> list[TriggerDefinition]:
        """Return the active triggers registered for ``event_type``."""
        ...


class ExecutionRecorder(ABC):
    """Persists the audit trail of executions.

    ``update_execution`` must be idempotent and safe to call out of order:
    a terminal status is never replaced by ``running``.
    """

    @abstractmethod
    async def create_execution(
        self,
        workflow_id: str,
        actor_id: Optional[str],
        trigger_data: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Create a ``running`` execution record and return its id."""
        ...

    @abstractmethod
    async def update_execution(
        self,
        execution_id: str,
        status: str,
        output: Optional[Mapping[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def append_log(
        self,
        execution_id: str,
        step_id: Optional[str],
        event: Mapping[str, Any],
    ) -> None:
        """Append one log entry (``event`` carries level, message, details)."""
        ...


# ─── Delivery collaborators ───────────────────────────────────

class EmailSender(ABC):
    @abstractmethod
    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        """Send an email described by ``config`` (to, subject, body, template)."""
        ...


class WebhookClient(ABC):
    @abstractmethod
    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        """Perform an outbound HTTP call (url, method, headers, body)."""
        ...


class NotificationCreator(ABC):
    @abstractmethod
    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        """Create an in-app notification (user_id, title, message, priority)."""
        ...


class AIAnalysisClient(ABC):
    @abstractmethod
    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        """Run an AI analysis (query/prompt, analysis_type, context)."""
        ...


class EventPublisher(ABC):
    """Forwards ingested business events to outbound subscribers."""

    @abstractmethod
    async def publish(self, event: Mapping[str, Any]) -> None:
        ...


@dataclass
class StepCollaborators:
    """Everything the step executor delegates to, injected as one bundle.

    A missing collaborator makes steps of that type fail with a
    ``FatalError`` instead of silently succeeding.
    """

    email: Optional[EmailSender] = None
    webhook: Optional[WebhookClient] = None
    notification: Optional[NotificationCreator] = None
    ai: Optional[AIAnalysisClient] = None
    actions: Optional[ActionRegistry] = None
