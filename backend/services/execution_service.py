"""Execution service: execution records, log trail and history."""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import TERMINAL_EXECUTION_STATUSES, ExecutionStatus, LogLevel
from core.exceptions import NotFoundError, ValidationError
from db.base import utcnow
from db.models.execution import Execution
from db.models.execution_log import ExecutionLog
from services.base import BaseService

logger = structlog.get_logger(__name__)

_VALID_STATUSES = {status.value for status in ExecutionStatus}


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ExecutionService(BaseService[Execution]):
    """Service for execution management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Execution, db)

    async def create_execution(
        self,
        workflow_id: str,
        actor_id: Optional[str],
        trigger_data: Optional[Mapping[str, Any]] = None,
    ) -> Execution:
        """Create a ``running`` execution record."""
        return await self.create({
            "workflow_id": workflow_id,
            "actor_id": actor_id,
            "status": ExecutionStatus.RUNNING.value,
            "trigger_data": dict(trigger_data or {}),
            "started_at": utcnow(),
        })

    async def update_execution(
        self,
        execution_id: str,
        status: str,
        output: Optional[Mapping[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Execution:
        """Apply a status update.

        Idempotent and safe out of order: once an execution reached a
        terminal status, later updates (a late ``running``, a repeated or
        conflicting terminal status) are ignored.

        Raises:
            NotFoundError: if the execution does not exist.
            ValidationError: for an unknown status.
        """
        if status not in _VALID_STATUSES:
            raise ValidationError(f"Unknown execution status: {status}")

        execution = await self.get_by_id(execution_id)
        if execution is None:
            raise NotFoundError(f"Execution {execution_id} not found")

        if execution.status in TERMINAL_EXECUTION_STATUSES:
            if status != execution.status:
                logger.info(
                    "Ignoring update of finished execution",
                    execution_id=execution_id,
                    current=execution.status,
                    requested=status,
                )
            return execution

        execution.status = status
        if output is not None:
            execution.output = dict(output)
        if error is not None:
            execution.error_message = error
        if status in TERMINAL_EXECUTION_STATUSES:
            completed_at = utcnow()
            execution.completed_at = completed_at
            started_at = _as_aware(execution.started_at)
            if started_at is not None:
                execution.duration_ms = int((completed_at - started_at).total_seconds() * 1000)

        await self.db.flush()
        return execution

    async def append_log(
        self,
        execution_id: str,
        step_id: Optional[str],
        event: Mapping[str, Any],
    ) -> ExecutionLog:
        timestamp = event.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        entry = ExecutionLog(
            execution_id=execution_id,
            step_id=step_id,
            level=event.get("level", LogLevel.INFO.value),
            message=event.get("message", ""),
            details=dict(event.get("details") or {}),
            timestamp=timestamp or utcnow(),
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def get_execution(self, execution_id: str) -> Execution:
        execution = await self.get_by_id(execution_id)
        if execution is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        return execution

    async def get_by_workflow(
        self,
        workflow_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Execution]:
        """Execution history of a workflow, newest first."""
        query = (
            select(Execution)
            .where(Execution.workflow_id == workflow_id, Execution.is_deleted == False)  # noqa: E712
            .order_by(Execution.created_at.desc(), Execution.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def get_logs(self, execution_id: str) -> Sequence[ExecutionLog]:
        query = (
            select(ExecutionLog)
            .where(ExecutionLog.execution_id == execution_id)
            .order_by(ExecutionLog.timestamp, ExecutionLog.created_at)
        )
        result = await self.db.execute(query)
        return result.scalars().all()
