"""Workflow model for the business automation engine."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class Workflow(BaseModel):
    """Workflow model: an ordered list of steps plus variable defaults.

    Attributes:
        id: Unique identifier (UUID string)
        owner_id: Actor who created the workflow
        name: Workflow name
        description: Workflow description
        is_active: Inactive workflows are never executed
        variables: JSON mapping of variable name to default value
        version: Bumped on every update of steps/variables
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "workflows"

    owner_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    variables: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(default=1)

    # Relationships
    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.position",
        lazy="selectin",
    )
    triggers: Mapped[list["Trigger"]] = relationship(
        "Trigger",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )
    executions: Mapped[list["Execution"]] = relationship(
        "Execution",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )
