"""Execution endpoints: record detail, log trail, cancellation."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.common import MessageResponse
from api.schemas.execution import (
    ExecutionLogResponse,
    ExecutionResponse,
    RunningExecutionsResponse,
)
from app.dependencies import get_db, get_engine
from core.exceptions import NotFoundError
from services.execution_service import ExecutionService
from workflow.engine import WorkflowEngine

router = APIRouter()


@router.get("/running", response_model=RunningExecutionsResponse)
async def list_running_executions(
    engine: WorkflowEngine = Depends(get_engine),
) -> RunningExecutionsResponse:
    """Runs in progress in this API process."""
    return RunningExecutionsResponse(executions=engine.get_running_executions())


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    db: AsyncSession = Depends(get_db),
) -> ExecutionResponse:
    execution = await ExecutionService(db).get_execution(execution_id)
    return ExecutionResponse.model_validate(execution)


@router.get("/{execution_id}/logs", response_model=List[ExecutionLogResponse])
async def get_execution_logs(
    execution_id: str,
    db: AsyncSession = Depends(get_db),
) -> List[ExecutionLogResponse]:
    """Audit trail of one execution, oldest first."""
    svc = ExecutionService(db)
    await svc.get_execution(execution_id)
    return [ExecutionLogResponse.model_validate(entry) for entry in await svc.get_logs(execution_id)]


@router.post("/{execution_id}/cancel", response_model=MessageResponse)
async def cancel_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine),
) -> MessageResponse:
    """Cancel a run executing in this process."""
    if not await engine.cancel_execution(execution_id):
        raise NotFoundError(f"Execution {execution_id} is not running")
    return MessageResponse(message=f"Execution {execution_id} cancelled")
