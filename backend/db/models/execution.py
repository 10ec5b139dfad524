"""Execution model for the business automation engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionStatus
from db.base import BaseModel


class Execution(BaseModel):
    """One run of a workflow.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        actor_id: Actor who started the run (trigger owner for event runs)
        status: running, completed, failed, cancelled
        trigger_data: Input payload the run was started with
        output: Step outputs keyed by step id
        error_message: Error message if the run did not complete
        started_at: Execution start timestamp
        completed_at: Execution completion timestamp
        duration_ms: Execution duration in milliseconds
    """

    __tablename__ = "executions"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.RUNNING.value, index=True
    )
    trigger_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(nullable=True)

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="executions", lazy="noload"
    )
    logs: Mapped[list["ExecutionLog"]] = relationship(
        "ExecutionLog",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="ExecutionLog.timestamp",
        lazy="noload",
    )
