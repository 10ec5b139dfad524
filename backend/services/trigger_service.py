"""Trigger service: CRUD for event triggers."""

from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError
from db.models.trigger import Trigger
from db.models.workflow import Workflow
from services.base import BaseService
from workflow.conditions import ConditionEvaluator
from workflow.definitions import TriggerDefinition

logger = structlog.get_logger(__name__)


def _validate_conditions(conditions: Optional[dict]) -> dict:
    """Reject unknown operators before a trigger is saved."""
    conditions = dict(conditions or {})
    for field_path, rule in conditions.items():
        ConditionEvaluator.normalize(field_path, rule)
    return conditions


def to_trigger_definition(trigger: Trigger) -> TriggerDefinition:
    return TriggerDefinition(
        id=trigger.id,
        workflow_id=trigger.workflow_id,
        event_type=trigger.event_type,
        is_active=trigger.is_active,
        conditions=trigger.conditions or {},
        owner_id=trigger.owner_id,
    )


class TriggerService(BaseService[Trigger]):
    """Service for trigger management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Trigger, db)

    async def create_trigger(
        self,
        workflow_id: str,
        event_type: str,
        conditions: Optional[dict] = None,
        name: str = "",
        is_active: bool = True,
        owner_id: Optional[str] = None,
    ) -> Trigger:
        """Create a trigger for an existing workflow.

        Raises:
            NotFoundError: if the workflow does not exist.
            ConfigurationError: if a condition uses an unknown operator.
        """
        workflow = await self.db.get(Workflow, workflow_id)
        if workflow is None or workflow.is_deleted:
            raise NotFoundError(f"Workflow {workflow_id} not found")

        trigger = await self.create({
            "workflow_id": workflow_id,
            "event_type": event_type,
            "conditions": _validate_conditions(conditions),
            "name": name or event_type,
            "is_active": is_active,
            "owner_id": owner_id,
        })
        logger.info("Trigger created", trigger_id=trigger.id, event_type=event_type)
        return trigger

    async def update_trigger(
        self,
        trigger_id: str,
        event_type: Optional[str] = None,
        conditions: Optional[dict] = None,
        name: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Trigger:
        data = {"event_type": event_type, "name": name, "is_active": is_active}
        if conditions is not None:
            data["conditions"] = _validate_conditions(conditions)
        trigger = await self.update(trigger_id, data)
        if trigger is None:
            raise NotFoundError(f"Trigger {trigger_id} not found")
        return trigger

    async def get_trigger(self, trigger_id: str) -> Trigger:
        trigger = await self.get_by_id(trigger_id)
        if trigger is None:
            raise NotFoundError(f"Trigger {trigger_id} not found")
        return trigger

    async def delete_trigger(self, trigger_id: str) -> None:
        if not await self.soft_delete(trigger_id):
            raise NotFoundError(f"Trigger {trigger_id} not found")

    async def get_active_for_event(self, event_type: str) -> list[TriggerDefinition]:
        """Active triggers for ``event_type`` whose workflow still exists."""
        query = (
            select(Trigger)
            .join(Workflow, Workflow.id == Trigger.workflow_id)
            .where(
                Trigger.event_type == event_type,
                Trigger.is_active == True,  # noqa: E712
                Trigger.is_deleted == False,  # noqa: E712
                Workflow.is_deleted == False,  # noqa: E712
            )
            .order_by(Trigger.created_at)
        )
        result = await self.db.execute(query)
        return [to_trigger_definition(t) for t in result.scalars().all()]
