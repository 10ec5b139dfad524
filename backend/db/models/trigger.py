"""Trigger model for the business automation engine.

A trigger binds a business event type (``invoice.created``,
``client.updated``, ...) plus conditions on the event payload to the
automatic execution of one workflow.
"""

from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class Trigger(BaseModel):
    """Trigger model: defines which events start a workflow.

    Attributes:
        id: UUID primary key
        workflow_id: FK → Workflow to execute when triggered
        owner_id: Actor the triggered executions are attributed to
        name: Human-readable trigger name
        event_type: Event type key matched against inbound events
        is_active: Whether this trigger is evaluated at all
        conditions: JSON mapping of payload field → {operator, value}

    Conditions example:
        {"amount": {"operator": "greater_than", "value": 1000},
         "status": "open"}
    """

    __tablename__ = "workflow_triggers"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    name: Mapped[str] = mapped_column(nullable=False, default="")
    event_type: Mapped[str] = mapped_column(nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="triggers", lazy="noload"
    )
