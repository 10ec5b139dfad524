"""Background dispatch of workflow runs and business events.

Runs go to Celery workers when they are reachable; otherwise (or with
``ENGINE_DISPATCH_MODE=inline``) they run in-process on an asyncio task.

Modes:
    celery  always enqueue, broker errors propagate to the caller
    inline  always run in-process
    auto    enqueue when at least one worker answers a ping, else inline
"""

import asyncio
from typing import Any, Coroutine, Mapping, Optional

import structlog

from app.config import Settings, get_settings
from core.exceptions import ConfigurationError
from workflow.engine import WorkflowEngine

logger = structlog.get_logger(__name__)

DISPATCH_MODES = ("auto", "celery", "inline")

# Strong references to in-process runs until they finish
_background_tasks: set[asyncio.Task] = set()


def _ping_workers() -> int:
    """Number of Celery workers answering a ping (blocking)."""
    from worker.celery_app import celery_app

    replies = celery_app.control.inspect(timeout=2.0).ping()
    return len(replies or {})


async def drain_background_tasks(timeout: Optional[float] = None) -> int:
    """Wait for in-process runs to finish. Returns how many were still pending."""
    pending = list(_background_tasks)
    if not pending:
        return 0
    _, still_running = await asyncio.wait(pending, timeout=timeout)
    if still_running:
        logger.warning("In-process runs still running", count=len(still_running))
    return len(still_running)


class DispatchService:
    """Hands runs and events to Celery, or runs them in-process."""

    def __init__(self, engine: WorkflowEngine, settings: Optional[Settings] = None):
        self.engine = engine
        self.settings = settings or get_settings()
        self.mode = self.settings.ENGINE_DISPATCH_MODE.lower()
        if self.mode not in DISPATCH_MODES:
            raise ConfigurationError(f"Unknown ENGINE_DISPATCH_MODE: {self.mode}")

    async def _use_celery(self) -> bool:
        if self.mode == "inline":
            return False
        if self.mode == "celery":
            return True

        loop = asyncio.get_running_loop()
        try:
            workers = await loop.run_in_executor(None, _ping_workers)
        except Exception as e:
            logger.warning("Celery unreachable, running in-process", error=str(e))
            return False
        if not workers:
            logger.info("No Celery workers found, running in-process")
            return False
        return True

    @staticmethod
    def _spawn(coro: Coroutine, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    async def dispatch_execution(
        self,
        workflow_id: str,
        trigger_input: Optional[Mapping[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> str:
        """Start a run in the background. Returns the mode used."""
        trigger_input = dict(trigger_input or {})
        if await self._use_celery():
            from worker.tasks.workflow import execute_workflow

            execute_workflow.delay(workflow_id, trigger_input, actor_id)
            logger.info("Execution dispatched to Celery", workflow_id=workflow_id)
            return "celery"

        self._spawn(
            self.engine.execute_workflow(workflow_id, trigger_input, actor_id),
            name=f"workflow-{workflow_id}",
        )
        logger.info("Execution running in-process", workflow_id=workflow_id)
        return "inline"

    async def dispatch_event(
        self,
        actor_id: Optional[str],
        event_type: str,
        entity_id: str,
        entity_type: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Ingest a business event in the background. Returns the mode used."""
        payload = dict(payload or {})
        if await self._use_celery():
            from worker.tasks.triggers import ingest_event

            ingest_event.delay(actor_id, event_type, entity_id, entity_type, payload)
            logger.info("Event dispatched to Celery", event_type=event_type, entity_id=entity_id)
            return "celery"

        self._spawn(
            self.engine.create_webhook_event(actor_id, event_type, entity_id, entity_type, payload),
            name=f"event-{event_type}",
        )
        logger.info("Event handled in-process", event_type=event_type, entity_id=entity_id)
        return "inline"
