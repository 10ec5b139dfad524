"""Database-backed implementations of the engine's storage ports, plus the
factory that assembles the production engine.

Every call opens its own session and commits before returning, so a
run's audit trail is durable step by step and one failed write never
poisons the next.
"""

from typing import Any, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from integrations.claude_client import ClaudeClient
from integrations.webhook_client import HttpWebhookClient, WebhookEventPublisher
from notifications.channels import EmailChannel, InAppChannel
from services.execution_service import ExecutionService
from services.trigger_service import TriggerService
from services.workflow_service import WorkflowService
from tasks.registry import ActionRegistry
from workflow.definitions import TriggerDefinition, WorkflowDefinition
from workflow.engine import EngineOptions, WorkflowEngine
from workflow.ports import (
    AIAnalysisClient,
    ExecutionRecorder,
    StepCollaborators,
    WorkflowStore,
)
from workflow.retry_strategies import Sleeper


class DatabaseWorkflowStore(WorkflowStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        async with self._session_factory() as session:
            return await WorkflowService(session).get_definition(workflow_id)

    async def get_triggers(self, event_type: str) -> list[TriggerDefinition]:
        async with self._session_factory() as session:
            return await TriggerService(session).get_active_for_event(event_type)


class DatabaseExecutionRecorder(ExecutionRecorder):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_execution(
        self,
        workflow_id: str,
        actor_id: Optional[str],
        trigger_data: Optional[Mapping[str, Any]] = None,
    ) -> str:
        async with self._session_factory() as session:
            execution = await ExecutionService(session).create_execution(workflow_id, actor_id, trigger_data)
            execution_id = execution.id
            await session.commit()
        return execution_id

    async def update_execution(
        self,
        execution_id: str,
        status: str,
        output: Optional[Mapping[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        async with self._session_factory() as session:
            await ExecutionService(session).update_execution(execution_id, status, output, error)
            await session.commit()

    async def append_log(
        self,
        execution_id: str,
        step_id: Optional[str],
        event: Mapping[str, Any],
    ) -> None:
        async with self._session_factory() as session:
            await ExecutionService(session).append_log(execution_id, step_id, event)
            await session.commit()


# ─── Production wiring ─────────────────────────────────────────

def build_workflow_engine(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
    ai_client: Optional[AIAnalysisClient] = None,
    sleeper: Optional[Sleeper] = None,
) -> WorkflowEngine:
    """Assemble a WorkflowEngine backed by the database and the default channels."""
    settings = settings or get_settings()
    webhook = HttpWebhookClient(
        timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
        signing_secret=settings.WEBHOOK_SIGNING_SECRET,
        allow_private_hosts=settings.WEBHOOK_ALLOW_PRIVATE_HOSTS,
    )
    collaborators = StepCollaborators(
        email=EmailChannel.from_settings(settings),
        webhook=webhook,
        notification=InAppChannel(session_factory),
        ai=ai_client or ClaudeClient(settings),
        actions=ActionRegistry(),
    )
    publisher = None
    if settings.EVENT_WEBHOOK_URLS:
        publisher = WebhookEventPublisher(webhook, settings.EVENT_WEBHOOK_URLS)

    return WorkflowEngine(
        store=DatabaseWorkflowStore(session_factory),
        recorder=DatabaseExecutionRecorder(session_factory),
        collaborators=collaborators,
        sleeper=sleeper,
        options=EngineOptions.from_settings(settings),
        event_publisher=publisher,
    )
