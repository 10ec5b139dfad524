"""Database models for the business automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from db.models.trigger import Trigger
from db.models.execution import Execution
from db.models.execution_log import ExecutionLog
from db.models.notification import Notification

__all__ = [
    "Workflow",
    "WorkflowStep",
    "Trigger",
    "Execution",
    "ExecutionLog",
    "Notification",
]
