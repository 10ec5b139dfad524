"""WorkflowStep model for the business automation engine."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RetryBackoff
from db.base import BaseModel


class WorkflowStep(BaseModel):
    """One step of a workflow.

    Attributes:
        id: Row identifier (UUID string)
        workflow_id: Foreign key to Workflow
        step_key: Step id referenced by placeholders, unique within the workflow
        position: Execution order (0-based)
        step_type: action, condition, delay, webhook, email, notification, gpt
        name: Step name
        configuration: JSON configuration, may contain {{placeholders}}
        parameters: JSON parameters passed to action handlers
        conditions: JSON condition mapping (condition steps, guards)
        timeout_seconds: Hard deadline per attempt
        retry_count: Retries after the first attempt
        retry_delay_seconds: Wait between attempts
        retry_backoff: fixed or exponential
    """

    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_key", name="uq_workflow_steps_workflow_key"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_key: Mapped[str] = mapped_column(nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    configuration: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    parameters: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timeout_seconds: Mapped[float] = mapped_column(default=30.0)
    retry_count: Mapped[int] = mapped_column(default=0)
    retry_delay_seconds: Mapped[float] = mapped_column(default=30.0)
    retry_backoff: Mapped[str] = mapped_column(default=RetryBackoff.FIXED.value)

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="steps", lazy="noload"
    )
