"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Task routing to the workflow and trigger queues
- Serialization and timezone settings
- structlog output for worker processes
"""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from app.config import get_settings
from core.logging_config import setup_logging

settings = get_settings()

celery_app = Celery(
    "business_automation",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Workflow runs and event fan-out scale independently
    task_routes={
        "worker.tasks.workflow.*": {"queue": "workflows"},
        "worker.tasks.triggers.*": {"queue": "triggers"},
    },
    task_default_queue="workflows",

    # Result expiration (24 hours)
    result_expires=86400,

    # No task time limits: delay steps may wait up to DELAY_STEP_MAX_SECONDS
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,

    include=[
        "worker.tasks.workflow",
        "worker.tasks.triggers",
    ],
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Connecting this signal stops Celery from installing its own handlers
    setup_logging()
