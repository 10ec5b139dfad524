"""Result types produced by the workflow engine."""

from dataclasses import dataclass, field
from typing import Any, Optional

from core.constants import StepStatus


@dataclass(frozen=True)
class StepResult:
    """Outcome of one step within one run."""

    step_id: str
    status: StepStatus
    output: Any = None
    attempts: int = 0
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "output": self.output,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one workflow run. ``error`` is set iff ``success`` is False."""

    success: bool
    execution_id: Optional[str]
    output: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    dry_run: bool = False
    step_results: tuple[StepResult, ...] = ()
    duration_ms: int = 0

    def __post_init__(self):
        if self.success and self.error is not None:
            raise ValueError("A successful ExecutionResult cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("A failed ExecutionResult must carry an error")

    @classmethod
    def failure(
        cls,
        error: str,
        execution_id: Optional[str] = None,
        dry_run: bool = False,
        step_results: tuple[StepResult, ...] = (),
        output: Optional[dict[str, Any]] = None,
        duration_ms: int = 0,
    ) -> "ExecutionResult":
        return cls(
            success=False,
            execution_id=execution_id,
            output=output or {},
            error=error or "Unknown error",
            dry_run=dry_run,
            step_results=step_results,
            duration_ms=duration_ms,
        )

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "execution_id": self.execution_id,
            "output": self.output,
            "duration_ms": self.duration_ms,
            "steps": [r.to_dict() for r in self.step_results],
        }
        if self.error is not None:
            data["error"] = self.error
        if self.dry_run:
            data["dry_run"] = True
        return data
