"""Workflow endpoints: CRUD, manual and test runs, execution history."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.common import PaginationParams
from api.schemas.execution import (
    DispatchResponse,
    ExecuteRequest,
    ExecutionListResponse,
    ExecutionResponse,
    ExecutionResultResponse,
)
from api.schemas.workflow import (
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowStepResponse,
    WorkflowUpdate,
    steps_to_dicts,
)
from app.dependencies import get_actor_id, get_db, get_dispatcher, get_engine
from db.models.workflow import Workflow
from services.dispatch_service import DispatchService
from services.execution_service import ExecutionService
from services.workflow_service import WorkflowService
from workflow.engine import WorkflowEngine

logger = structlog.get_logger(__name__)

router = APIRouter()


def _workflow_to_response(wf: Workflow) -> WorkflowResponse:
    """Convert a Workflow ORM object to response schema."""
    return WorkflowResponse(
        id=wf.id,
        name=wf.name,
        description=wf.description or "",
        is_active=wf.is_active,
        variables=wf.variables or {},
        version=wf.version,
        owner_id=wf.owner_id,
        steps=[
            WorkflowStepResponse(
                id=row.step_key,
                name=row.name,
                type=row.step_type,
                configuration=row.configuration or {},
                parameters=row.parameters or {},
                conditions=row.conditions,
                timeout_seconds=row.timeout_seconds,
                retry_count=row.retry_count,
                retry_delay_seconds=row.retry_delay_seconds,
                retry_backoff=row.retry_backoff,
            )
            for row in sorted(wf.steps, key=lambda r: r.position)
        ],
        created_at=wf.created_at,
        updated_at=wf.updated_at,
    )


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    pagination: PaginationParams = Depends(),
    owner_id: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> WorkflowListResponse:
    """List workflows (paginated, newest first)."""
    workflows, total = await WorkflowService(db).list(
        owner_id=owner_id,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return WorkflowListResponse(
        workflows=[_workflow_to_response(wf) for wf in workflows],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreate,
    actor_id: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """Create a workflow with its ordered steps."""
    wf = await WorkflowService(db).create_workflow(
        name=request.name,
        owner_id=actor_id,
        description=request.description,
        is_active=request.is_active,
        variables=request.variables,
        steps=steps_to_dicts(request.steps),
    )
    return _workflow_to_response(wf)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    return _workflow_to_response(await WorkflowService(db).get_workflow(workflow_id))


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Update workflow fields. Steps and variables are replaced as a whole
    and bump the version; runs already in flight keep their snapshot.
    """
    wf = await WorkflowService(db).update_workflow(
        workflow_id,
        name=request.name,
        description=request.description,
        is_active=request.is_active,
        variables=request.variables,
        steps=steps_to_dicts(request.steps) if request.steps is not None else None,
    )
    return _workflow_to_response(wf)


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> None:
    """Soft-delete a workflow; its execution history is kept."""
    await WorkflowService(db).delete_workflow(workflow_id)


# ─── Runs ──────────────────────────────────────────────────────

@router.post("/{workflow_id}/execute", response_model=ExecutionResultResponse)
async def execute_workflow(
    workflow_id: str,
    request: ExecuteRequest,
    actor_id: Optional[str] = Depends(get_actor_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> ExecutionResultResponse:
    """
    Run a workflow and wait for the result.
    Failures (including an unknown or inactive workflow) come back
    as ``success: false`` with the error message.
    """
    result = await engine.execute_workflow(workflow_id, request.trigger_data, actor_id)
    return ExecutionResultResponse.from_result(result)


@router.post(
    "/{workflow_id}/dispatch",
    response_model=DispatchResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def dispatch_workflow(
    workflow_id: str,
    request: ExecuteRequest,
    actor_id: Optional[str] = Depends(get_actor_id),
    dispatcher: DispatchService = Depends(get_dispatcher),
) -> DispatchResponse:
    """Start a run in the background; follow it through the executions endpoints."""
    mode = await dispatcher.dispatch_execution(workflow_id, request.trigger_data, actor_id)
    return DispatchResponse(mode=mode)


@router.post("/{workflow_id}/test", response_model=ExecutionResultResponse)
async def test_workflow(
    workflow_id: str,
    request: ExecuteRequest,
    actor_id: Optional[str] = Depends(get_actor_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> ExecutionResultResponse:
    """Dry run: nothing is recorded in the execution history."""
    result = await engine.test_workflow(workflow_id, request.trigger_data, actor_id)
    return ExecutionResultResponse.from_result(result)


@router.get("/{workflow_id}/executions", response_model=ExecutionListResponse)
async def list_workflow_executions(
    workflow_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> ExecutionListResponse:
    """Execution history of a workflow, newest first."""
    await WorkflowService(db).get_workflow(workflow_id)
    executions = await ExecutionService(db).get_by_workflow(workflow_id, limit=limit, offset=offset)
    return ExecutionListResponse(
        executions=[ExecutionResponse.model_validate(e) for e in executions],
        limit=limit,
        offset=offset,
    )
