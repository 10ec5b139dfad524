"""Celery tasks for trigger-related operations."""

import asyncio
from typing import Optional

import structlog

from worker.celery_app import celery_app
from worker.engine_scope import worker_engine

logger = structlog.get_logger(__name__)


async def _check_triggers(event_type: str, payload: dict) -> None:
    async with worker_engine() as engine:
        await engine.check_workflow_triggers(event_type, payload)


async def _ingest(
    actor_id: Optional[str],
    event_type: str,
    entity_id: str,
    entity_type: str,
    payload: dict,
) -> None:
    async with worker_engine() as engine:
        await engine.create_webhook_event(actor_id, event_type, entity_id, entity_type, payload)


@celery_app.task(
    name="worker.tasks.triggers.check_workflow_triggers",
    queue="triggers",
)
def check_workflow_triggers(event_type: str, payload: Optional[dict] = None) -> None:
    """Run every workflow whose active trigger matches the event.

    Args:
        event_type: Event type key, e.g. ``invoice.created``
        payload: Event data the trigger conditions are evaluated against
    """
    logger.info("Checking triggers", event_type=event_type)
    asyncio.run(_check_triggers(event_type, payload or {}))


@celery_app.task(
    name="worker.tasks.triggers.ingest_event",
    queue="triggers",
)
def ingest_event(
    actor_id: Optional[str],
    event_type: str,
    entity_id: str,
    entity_type: str,
    payload: Optional[dict] = None,
) -> None:
    """Publish a business event to subscribers and fan it out to triggers."""
    logger.info("Ingesting event", event_type=event_type, entity_id=entity_id)
    asyncio.run(_ingest(actor_id, event_type, entity_id, entity_type, payload or {}))
