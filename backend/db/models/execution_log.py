"""ExecutionLog model for the business automation engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import LogLevel
from db.base import BaseModel


class ExecutionLog(BaseModel):
    """One entry of an execution's audit trail.

    Attributes:
        id: Unique identifier (UUID string)
        execution_id: Foreign key to Execution
        step_id: Step key the entry belongs to (None for run-level entries)
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        details: JSON details (attempt, error, duration, ...)
        timestamp: When the event happened
    """

    __tablename__ = "execution_logs"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    level: Mapped[str] = mapped_column(
        default=LogLevel.INFO.value, index=True
    )
    message: Mapped[str] = mapped_column(nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Relationships
    execution: Mapped["Execution"] = relationship(
        "Execution", back_populates="logs", lazy="noload"
    )
