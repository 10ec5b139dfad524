"""Execution and workflow run schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from workflow.results import ExecutionResult


class ExecuteRequest(BaseModel):
    """Input for a manual or test run."""

    model_config = ConfigDict(populate_by_name=True)

    trigger_data: Dict[str, Any] = Field(
        default_factory=dict,
        alias="triggerData",
        description="Payload exposed to steps as {{triggerData.*}}",
    )


class StepResultResponse(BaseModel):
    step_id: str
    status: str = Field(description="succeeded, failed or skipped")
    output: Any = None
    attempts: int
    duration_ms: int
    error: Optional[str] = None


class ExecutionResultResponse(BaseModel):
    """Outcome of one workflow run."""

    success: bool
    execution_id: Optional[str] = Field(default=None, description="None for dry runs")
    output: Dict[str, Any] = Field(description="Step outputs keyed by step id")
    error: Optional[str] = None
    dry_run: bool = False
    duration_ms: int = 0
    steps: List[StepResultResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: ExecutionResult) -> "ExecutionResultResponse":
        return cls(
            success=result.success,
            execution_id=result.execution_id,
            output=result.output,
            error=result.error,
            dry_run=result.dry_run,
            duration_ms=result.duration_ms,
            steps=[StepResultResponse(**r.to_dict()) for r in result.step_results],
        )


class DispatchResponse(BaseModel):
    """Returned when a run or event is handed to the background."""

    status: str = Field(default="accepted")
    mode: str = Field(description="celery or inline")


class ExecutionResponse(BaseModel):
    """Execution record information response."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Execution ID")
    workflow_id: str = Field(description="Workflow ID")
    actor_id: Optional[str] = Field(default=None, description="Who started the run")
    status: str = Field(description="running, completed, failed or cancelled")
    trigger_data: Optional[Dict[str, Any]] = Field(default=None, description="Input payload")
    output: Optional[Dict[str, Any]] = Field(default=None, description="Step outputs")
    error_message: Optional[str] = Field(default=None, description="Error message if execution failed")
    started_at: Optional[datetime] = Field(default=None, description="Execution start timestamp")
    completed_at: Optional[datetime] = Field(default=None, description="Execution completion timestamp")
    duration_ms: Optional[int] = Field(default=None, description="Execution duration in milliseconds")


class ExecutionLogResponse(BaseModel):
    """Execution log entry response."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Log entry ID")
    step_id: Optional[str] = Field(default=None, description="Step the entry belongs to")
    level: str = Field(description="Log level (debug, info, warning, error)")
    message: str = Field(description="Log message")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional context data")
    timestamp: datetime = Field(description="Log timestamp")


class ExecutionListResponse(BaseModel):
    """A page of a workflow's execution history, newest first."""

    executions: List[ExecutionResponse] = Field(description="List of executions")
    limit: int
    offset: int


class RunningExecutionsResponse(BaseModel):
    executions: Dict[str, Dict[str, Any]] = Field(description="In-process runs keyed by execution id")
