"""Workflow service: CRUD with atomic step/variable replacement."""

from typing import Any, Optional, Sequence
from uuid import uuid4

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core.exceptions import NotFoundError
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from services.base import BaseService
from workflow.definitions import StepDefinition, WorkflowDefinition

logger = structlog.get_logger(__name__)


def _with_defaults(step: dict[str, Any]) -> dict[str, Any]:
    """Fill timeout and retry delay from settings when the step omits them."""
    settings = get_settings()
    data = dict(step)
    if all(data.get(k) is None for k in ("timeout_seconds", "timeoutSeconds", "timeout")):
        data["timeout_seconds"] = settings.STEP_DEFAULT_TIMEOUT_SECONDS
    if all(data.get(k) is None for k in ("retry_delay_seconds", "retryDelaySeconds", "retryDelay")):
        data["retry_delay_seconds"] = settings.STEP_DEFAULT_RETRY_DELAY_SECONDS
    return data


def _build_steps(workflow_id: str, steps: Sequence[dict[str, Any]]) -> list[WorkflowStep]:
    """Validate step dicts and turn them into ordered rows.

    Raises:
        ConfigurationError: for any malformed step.
    """
    definitions = [StepDefinition.from_dict(_with_defaults(step)) for step in steps]
    # Duplicate ids are rejected by the definition itself
    WorkflowDefinition(id=workflow_id, name="", steps=tuple(definitions))

    rows = []
    for position, step in enumerate(definitions):
        rows.append(WorkflowStep(
            workflow_id=workflow_id,
            step_key=step.id,
            position=position,
            step_type=step.type.value,
            name=step.name,
            configuration=dict(step.configuration),
            parameters=dict(step.parameters),
            conditions=dict(step.conditions) if step.conditions is not None else None,
            timeout_seconds=step.timeout_seconds,
            retry_count=step.retry_count,
            retry_delay_seconds=step.retry_delay_seconds,
            retry_backoff=step.retry_backoff.value,
        ))
    return rows


def to_definition(workflow: Workflow) -> WorkflowDefinition:
    """Snapshot a persisted workflow for the engine."""
    return WorkflowDefinition.from_dict({
        "id": workflow.id,
        "name": workflow.name,
        "is_active": workflow.is_active,
        "variables": workflow.variables or {},
        "owner_id": workflow.owner_id,
        "steps": [
            {
                "id": row.step_key,
                "name": row.name,
                "type": row.step_type,
                "configuration": row.configuration or {},
                "parameters": row.parameters or {},
                "conditions": row.conditions,
                "timeout_seconds": row.timeout_seconds,
                "retry_count": row.retry_count,
                "retry_delay_seconds": row.retry_delay_seconds,
                "retry_backoff": row.retry_backoff,
            }
            for row in sorted(workflow.steps, key=lambda r: r.position)
        ],
    })


class WorkflowService(BaseService[Workflow]):
    """Service for workflow management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Workflow, db)

    async def create_workflow(
        self,
        name: str,
        owner_id: Optional[str] = None,
        description: str = "",
        is_active: bool = True,
        variables: Optional[dict] = None,
        steps: Optional[Sequence[dict[str, Any]]] = None,
    ) -> Workflow:
        """Create a workflow together with its ordered steps."""
        workflow_id = str(uuid4())
        rows = _build_steps(workflow_id, steps or [])
        workflow = Workflow(
            id=workflow_id,
            owner_id=owner_id,
            name=name,
            description=description,
            is_active=is_active,
            variables=dict(variables or {}),
            version=1,
            steps=rows,
        )
        self.db.add(workflow)
        await self.db.flush()
        logger.info("Workflow created", workflow_id=workflow.id, steps=len(workflow.steps))
        return workflow

    async def update_workflow(
        self,
        workflow_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
        variables: Optional[dict] = None,
        steps: Optional[Sequence[dict[str, Any]]] = None,
    ) -> Workflow:
        """Update a workflow.

        ``steps`` and ``variables``, when given, replace the current ones
        as a whole inside the caller's transaction; running executions
        keep the snapshot they loaded.

        Raises:
            NotFoundError: if the workflow does not exist.
            ConfigurationError: if a step is malformed (nothing is changed).
        """
        workflow = await self.get_workflow(workflow_id)

        new_rows = _build_steps(workflow.id, steps) if steps is not None else None

        for key, value in (("name", name), ("description", description), ("is_active", is_active)):
            if value is not None:
                setattr(workflow, key, value)

        if variables is not None:
            workflow.variables = dict(variables)

        if new_rows is not None:
            await self.db.execute(
                delete(WorkflowStep).where(WorkflowStep.workflow_id == workflow.id)
            )
            self.db.add_all(new_rows)

        if variables is not None or new_rows is not None:
            workflow.version += 1

        await self.db.flush()
        if new_rows is not None:
            await self.db.refresh(workflow, attribute_names=["steps"])
        logger.info("Workflow updated", workflow_id=workflow.id, version=workflow.version)
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition:
        """Load the engine snapshot of a workflow.

        Raises:
            NotFoundError: if the workflow does not exist.
        """
        return to_definition(await self.get_workflow(workflow_id))

    async def delete_workflow(self, workflow_id: str) -> None:
        if not await self.soft_delete(workflow_id):
            raise NotFoundError(f"Workflow {workflow_id} not found")
        logger.info("Workflow deleted", workflow_id=workflow_id)
