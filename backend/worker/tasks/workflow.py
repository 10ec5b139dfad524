"""Celery tasks for workflow execution.

The engine records the execution itself (record, log trail, final
status), so the task only loads the engine, runs it and returns the
serialized ExecutionResult.
"""

import asyncio
from typing import Optional

import structlog

from worker.celery_app import celery_app
from worker.engine_scope import worker_engine

logger = structlog.get_logger(__name__)


async def _execute(workflow_id: str, trigger_input: dict, actor_id: Optional[str]) -> dict:
    async with worker_engine() as engine:
        result = await engine.execute_workflow(workflow_id, trigger_input, actor_id)
    return result.to_dict()


@celery_app.task(
    name="worker.tasks.workflow.execute_workflow",
    bind=True,
    acks_late=True,
    queue="workflows",
)
def execute_workflow(
    self,
    workflow_id: str,
    trigger_input: Optional[dict] = None,
    actor_id: Optional[str] = None,
) -> dict:
    """Execute a workflow in the background.

    Not retried at the task level: step retries happen inside the
    engine, and a re-run would create a second execution record.

    Args:
        workflow_id: Workflow to execute
        trigger_input: Payload exposed to steps as ``triggerData``
        actor_id: Who started the run
    """
    logger.info("Workflow task started", workflow_id=workflow_id, task_id=self.request.id)
    result = asyncio.run(_execute(workflow_id, trigger_input or {}, actor_id))
    logger.info(
        "Workflow task finished",
        workflow_id=workflow_id,
        execution_id=result.get("execution_id"),
        success=result.get("success"),
    )
    return result
