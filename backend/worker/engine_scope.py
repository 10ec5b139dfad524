"""Engine lifetime for a single Celery task."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from db.database import worker_session_factory
from integrations.claude_client import ClaudeClient
from services.engine_adapters import build_workflow_engine
from workflow.engine import WorkflowEngine


@asynccontextmanager
async def worker_engine() -> AsyncIterator[WorkflowEngine]:
    """A WorkflowEngine on a task-private database engine.

    Usage:
        async with worker_engine() as engine:
            result = await engine.execute_workflow(workflow_id)
    """
    async with worker_session_factory() as session_factory:
        ai_client = ClaudeClient()
        try:
            yield build_workflow_engine(session_factory, ai_client=ai_client)
        finally:
            await ai_client.close()
