"""Workflow Execution Engine: sequential workflow runner.

This is the core of the automation platform. It takes a workflow snapshot
(an ordered list of steps plus variable defaults) and executes it against
trigger or manual input, handling:

- Strict declared-order execution, one step at a time
- Condition steps (false = step skipped, run continues)
- Guard conditions on regular steps
- Per-step timeout and bounded fixed/exponential retry
- Variable passing between steps ({{placeholders}} over the context)
- Execution record and log trail through the ExecutionRecorder port
- Cancellation of running executions
- Dry runs (no execution record)

Context seen by step configuration and conditions:
{
    "<variable>": ...,              # workflow variable defaults
    "triggerData": {...},           # trigger / manual input payload
    "<step_id>": {...},             # output of every completed step
}
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

import structlog

from core.constants import (
    TRIGGER_DATA_KEY,
    ExecutionStatus,
    LogLevel,
    RunState,
    StepStatus,
    StepType,
)
from core.exceptions import AutomationError, CancellationError, FatalError
from triggers.evaluator import TriggerEvaluator
from workflow.conditions import evaluate_conditions
from workflow.definitions import StepDefinition, WorkflowDefinition
from workflow.executor import DEFAULT_DELAY_MAX_SECONDS, StepExecutor, parse_duration
from workflow.interpolation import interpolate
from workflow.ports import EventPublisher, ExecutionRecorder, StepCollaborators, WorkflowStore
from workflow.results import ExecutionResult, StepResult
from workflow.retry_strategies import AsyncioSleeper, RetryStrategy, Sleeper, run_with_policy

logger = structlog.get_logger(__name__)

INACTIVE_ERROR = "Workflow is inactive"


# ─── Execution Context ────────────────────────────────────────

@dataclass
class ExecutionContext:
    """Per-run scope: variables, trigger payload and completed step outputs.

    Created fresh for every run and never shared between runs.
    """

    workflow_id: str
    execution_id: Optional[str] = None
    variables: dict[str, Any] = field(default_factory=dict)
    trigger_data: dict[str, Any] = field(default_factory=dict)
    step_outputs: dict[str, Any] = field(default_factory=dict)
    current_step_id: Optional[str] = None
    dry_run: bool = False

    def scope(self) -> dict[str, Any]:
        """Flat namespace used for interpolation and condition evaluation."""
        return {
            **self.variables,
            TRIGGER_DATA_KEY: self.trigger_data,
            **self.step_outputs,
        }

    def record_output(self, step_id: str, output: Any) -> None:
        """Store a step's output; a ``variables`` mapping in it updates the variables."""
        self.step_outputs[step_id] = output
        if isinstance(output, Mapping) and isinstance(output.get("variables"), Mapping):
            self.variables.update(output["variables"])

    def snapshot(self) -> dict[str, Any]:
        return dict(self.step_outputs)


@dataclass
class EngineOptions:
    """Engine tunables, normally taken from ``Settings``."""

    max_retry_delay_seconds: float = 300.0
    delay_max_seconds: float = DEFAULT_DELAY_MAX_SECONDS
    dry_run_dispatches_steps: bool = True

    @classmethod
    def from_settings(cls, settings) -> "EngineOptions":
        return cls(
            max_retry_delay_seconds=settings.STEP_MAX_RETRY_DELAY_SECONDS,
            delay_max_seconds=settings.DELAY_STEP_MAX_SECONDS,
            dry_run_dispatches_steps=settings.DRY_RUN_DISPATCHES_STEPS,
        )


_TRANSITIONS = {
    RunState.NOT_STARTED: {RunState.RUNNING, RunState.FAILED},
    RunState.RUNNING: {RunState.COMPLETED, RunState.FAILED},
    RunState.COMPLETED: set(),
    RunState.FAILED: set(),
}


@dataclass
class _RunHandle:
    workflow_id: str
    context: ExecutionContext
    cancel_event: asyncio.Event
    started_at: str
    state: RunState = RunState.NOT_STARTED
    step_results: list[StepResult] = field(default_factory=list)

    def transition(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise FatalError(f"Invalid run transition {self.state.value} -> {new_state.value}")
        self.state = new_state


# ─── Workflow Runner ──────────────────────────────────────────

class WorkflowRunner:
    """Runs one workflow snapshot step by step.

    State machine per run: NOT_STARTED → RUNNING → {COMPLETED, FAILED}.
    """

    def __init__(
        self,
        executor: StepExecutor,
        recorder: Optional[ExecutionRecorder] = None,
        sleeper: Optional[Sleeper] = None,
        options: Optional[EngineOptions] = None,
    ):
        self._executor = executor
        self._recorder = recorder
        self._sleeper = sleeper or AsyncioSleeper()
        self._options = options or EngineOptions()
        self._running: dict[str, _RunHandle] = {}

    async def run(
        self,
        workflow: WorkflowDefinition,
        trigger_input: Optional[Mapping[str, Any]] = None,
        actor_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> ExecutionResult:
        """Execute ``workflow`` against ``trigger_input``.

        Never raises, except ``asyncio.CancelledError`` when the calling
        task itself is cancelled (the record is updated first).
        """
        if not workflow.is_active:
            logger.info("Workflow inactive, not executed", workflow_id=workflow.id)
            return ExecutionResult.failure(INACTIVE_ERROR, dry_run=dry_run)

        started = time.monotonic()
        trigger_data = dict(trigger_input or {})
        context = ExecutionContext(
            workflow_id=workflow.id,
            variables=dict(workflow.variables),
            trigger_data=trigger_data,
            dry_run=dry_run,
        )
        handle = _RunHandle(
            workflow_id=workflow.id,
            context=context,
            cancel_event=asyncio.Event(),
            started_at=datetime.now(timezone.utc).isoformat(),
        )

        if not dry_run and self._recorder is not None:
            try:
                context.execution_id = await self._recorder.create_execution(
                    workflow.id, actor_id, trigger_data,
                )
            except Exception as e:
                logger.error("Failed to create execution record", workflow_id=workflow.id, error=str(e))
                handle.transition(RunState.FAILED)
                return ExecutionResult.failure(f"Failed to create execution record: {e}")
            self._running[context.execution_id] = handle

        with structlog.contextvars.bound_contextvars(
            workflow_id=workflow.id, execution_id=context.execution_id, dry_run=dry_run,
        ):
            try:
                return await self._run_steps(workflow, handle, started)
            except asyncio.CancelledError:
                logger.warning("Execution task cancelled")
                await self._finish(
                    handle, ExecutionStatus.CANCELLED, error=CancellationError().message,
                )
                raise
            finally:
                if context.execution_id:
                    self._running.pop(context.execution_id, None)

    async def _run_steps(
        self,
        workflow: WorkflowDefinition,
        handle: _RunHandle,
        started: float,
    ) -> ExecutionResult:
        context = handle.context
        handle.transition(RunState.RUNNING)
        logger.info("Execution started", steps=len(workflow.steps))
        await self._log(context, None, LogLevel.INFO, f"Execution of '{workflow.name}' started", {
            "steps": len(workflow.steps),
        })

        error: Optional[str] = None
        status = ExecutionStatus.COMPLETED
        try:
            for step in workflow.steps:
                if handle.cancel_event.is_set():
                    raise CancellationError()
                context.current_step_id = step.id
                result = await self._run_step(step, context, handle.cancel_event)
                handle.step_results.append(result)
                if result.status == StepStatus.FAILED:
                    error = f"Step '{step.name}' ({step.id}) failed: {result.error}"
                    status = ExecutionStatus.FAILED
                    break
        except CancellationError as e:
            error = e.message
            status = ExecutionStatus.CANCELLED
        except Exception as e:
            logger.exception("Execution aborted", error=str(e))
            error = f"Execution failed: {e}"
            status = ExecutionStatus.FAILED

        duration_ms = int((time.monotonic() - started) * 1000)
        await self._finish(handle, status, error=error)

        if error is None:
            logger.info("Execution completed", duration_ms=duration_ms)
            return ExecutionResult(
                success=True,
                execution_id=context.execution_id,
                output=context.snapshot(),
                dry_run=context.dry_run,
                step_results=tuple(handle.step_results),
                duration_ms=duration_ms,
            )

        logger.warning("Execution failed", error=error, duration_ms=duration_ms)
        return ExecutionResult.failure(
            error,
            execution_id=context.execution_id,
            dry_run=context.dry_run,
            step_results=tuple(handle.step_results),
            output=context.snapshot(),
            duration_ms=duration_ms,
        )

    async def _finish(
        self,
        handle: _RunHandle,
        status: ExecutionStatus,
        error: Optional[str] = None,
    ) -> None:
        """Move the run to its terminal state and update the record."""
        context = handle.context
        terminal = RunState.COMPLETED if status == ExecutionStatus.COMPLETED else RunState.FAILED
        if handle.state == RunState.RUNNING:
            handle.transition(terminal)

        if error is None:
            await self._log(context, None, LogLevel.INFO, "Execution completed", {
                "steps": len(handle.step_results),
            })
        else:
            await self._log(context, None, LogLevel.ERROR, f"Execution {status.value}", {
                "error": error,
            })

        if context.execution_id is None or self._recorder is None:
            return
        try:
            await self._recorder.update_execution(
                context.execution_id,
                status.value,
                output=context.snapshot(),
                error=error,
            )
        except Exception as e:
            logger.error("Failed to update execution record", status=status.value, error=str(e))

    # ─── Steps ────────────────────────────────────────────────

    async def _run_step(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        cancel_event: asyncio.Event,
    ) -> StepResult:
        started = time.monotonic()
        scope = context.scope()
        config = interpolate(dict(step.configuration), scope)
        await self._log(context, step.id, LogLevel.INFO, f"Step '{step.name}' started", {
            "type": step.type.value,
        })

        if step.type == StepType.CONDITION:
            return await self._run_condition(step, context, scope, started)

        if step.conditions is not None:
            try:
                allowed = evaluate_conditions(interpolate(dict(step.conditions), scope), scope)
            except AutomationError as e:
                return await self._step_failed(step, context, e.message, 0, started)
            if not allowed:
                await self._log(context, step.id, LogLevel.INFO, f"Step '{step.name}' skipped", {
                    "reason": "guard conditions not met",
                })
                return StepResult(step_id=step.id, status=StepStatus.SKIPPED, duration_ms=_elapsed(started))

        if context.dry_run and not self._options.dry_run_dispatches_steps:
            return StepResult(step_id=step.id, status=StepStatus.SKIPPED, duration_ms=_elapsed(started))

        strategy = RetryStrategy.from_step(step, max_delay=self._options.max_retry_delay_seconds)

        async def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            await self._log(
                context, step.id, LogLevel.WARNING,
                f"Step '{step.name}' attempt {attempt}/{strategy.total_attempts} failed, "
                f"retrying in {delay:g}s",
                {"attempt": attempt, "error": str(error) or type(error).__name__},
            )

        result = await run_with_policy(
            lambda: self._executor.execute(step, config, context=context, cancel_event=cancel_event),
            step_id=step.id,
            timeout_seconds=self._effective_timeout(step, config),
            strategy=strategy,
            sleeper=self._sleeper,
            cancel_event=cancel_event,
            on_retry=on_retry,
        )

        if not result.succeeded:
            return await self._step_failed(step, context, result.error, result.attempts, started)

        context.record_output(step.id, result.output)
        await self._log(context, step.id, LogLevel.INFO, f"Step '{step.name}' completed", {
            "attempts": result.attempts,
            "duration_ms": result.duration_ms,
        })
        return result

    async def _run_condition(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        scope: dict,
        started: float,
    ) -> StepResult:
        conditions = interpolate(dict(step.conditions or {}), scope)
        try:
            passed = evaluate_conditions(conditions, scope)
        except AutomationError as e:
            return await self._step_failed(step, context, e.message, 1, started)

        output = {
            "type": StepType.CONDITION.value,
            "conditions": conditions,
            "result": passed,
            "passed": passed,
        }
        context.record_output(step.id, output)
        status = StepStatus.SUCCEEDED if passed else StepStatus.SKIPPED
        await self._log(
            context, step.id, LogLevel.INFO,
            f"Condition '{step.name}' {'passed' if passed else 'not met, step skipped'}",
            {"passed": passed},
        )
        return StepResult(
            step_id=step.id,
            status=status,
            output=output,
            attempts=1,
            duration_ms=_elapsed(started),
        )

    async def _step_failed(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        error: Optional[str],
        attempts: int,
        started: float,
    ) -> StepResult:
        await self._log(context, step.id, LogLevel.ERROR, f"Step '{step.name}' failed", {
            "error": error,
            "attempts": attempts,
        })
        return StepResult(
            step_id=step.id,
            status=StepStatus.FAILED,
            attempts=attempts,
            duration_ms=_elapsed(started),
            error=error,
        )

    @staticmethod
    def _effective_timeout(step: StepDefinition, config: Mapping[str, Any]) -> float:
        """Delay steps get their own duration on top of the step timeout."""
        if step.type != StepType.DELAY:
            return step.timeout_seconds
        try:
            return step.timeout_seconds + parse_duration(config.get("duration", config.get("seconds")))
        except AutomationError:
            return step.timeout_seconds

    async def _log(
        self,
        context: ExecutionContext,
        step_id: Optional[str],
        level: LogLevel,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        if context.execution_id is None or self._recorder is None:
            return
        event = {
            "level": level.value,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._recorder.append_log(context.execution_id, step_id, event)
        except Exception as e:
            logger.warning("Failed to append execution log", step_id=step_id, error=str(e))

    # ─── Running executions ───────────────────────────────────

    def cancel(self, execution_id: str) -> bool:
        handle = self._running.get(execution_id)
        if handle is None:
            return False
        handle.cancel_event.set()
        logger.info("Execution marked for cancellation", execution_id=execution_id)
        return True

    def running(self) -> dict[str, dict]:
        return {
            eid: {
                "workflow_id": handle.workflow_id,
                "state": handle.state.value,
                "started_at": handle.started_at,
                "current_step": handle.context.current_step_id,
                "steps_completed": sum(
                    1 for r in handle.step_results if r.status == StepStatus.SUCCEEDED
                ),
                "steps_skipped": sum(
                    1 for r in handle.step_results if r.status == StepStatus.SKIPPED
                ),
            }
            for eid, handle in self._running.items()
        }


def _elapsed(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


# ─── Workflow Engine ──────────────────────────────────────────

class WorkflowEngine:
    """Public entry points of the automation engine.

    Wires the store, recorder and delivery collaborators to a
    ``WorkflowRunner`` and a ``TriggerEvaluator``. None of the entry
    points raise; failures come back as ``ExecutionResult.success=False``.
    """

    def __init__(
        self,
        store: WorkflowStore,
        recorder: Optional[ExecutionRecorder] = None,
        collaborators: Optional[StepCollaborators] = None,
        sleeper: Optional[Sleeper] = None,
        options: Optional[EngineOptions] = None,
        event_publisher: Optional[EventPublisher] = None,
    ):
        self._store = store
        self._options = options or EngineOptions()
        self._sleeper = sleeper or AsyncioSleeper()
        self._event_publisher = event_publisher
        self._executor = StepExecutor(
            collaborators=collaborators,
            sleeper=self._sleeper,
            delay_max_seconds=self._options.delay_max_seconds,
        )
        self._runner = WorkflowRunner(
            self._executor,
            recorder=recorder,
            sleeper=self._sleeper,
            options=self._options,
        )
        self._trigger_evaluator = TriggerEvaluator(store, self._run_triggered)

    @property
    def runner(self) -> WorkflowRunner:
        return self._runner

    async def execute_workflow(
        self,
        workflow_id: str,
        trigger_input: Optional[Mapping[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Load the workflow and run it, recording the execution."""
        return await self._load_and_run(workflow_id, trigger_input, actor_id, dry_run=False)

    async def test_workflow(
        self,
        workflow_id: str,
        trigger_input: Optional[Mapping[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Dry run: steps are dispatched but no execution record is written."""
        return await self._load_and_run(workflow_id, trigger_input, actor_id, dry_run=True)

    async def _load_and_run(
        self,
        workflow_id: str,
        trigger_input: Optional[Mapping[str, Any]],
        actor_id: Optional[str],
        dry_run: bool,
    ) -> ExecutionResult:
        try:
            workflow = await self._store.get_workflow(workflow_id)
        except Exception as e:
            message = e.message if isinstance(e, AutomationError) else str(e)
            logger.warning("Failed to load workflow", workflow_id=workflow_id, error=message)
            return ExecutionResult.failure(message or "Failed to load workflow", dry_run=dry_run)
        return await self._runner.run(workflow, trigger_input, actor_id, dry_run=dry_run)

    async def _run_triggered(
        self,
        workflow: WorkflowDefinition,
        payload: Mapping[str, Any],
        actor_id: Optional[str],
    ) -> ExecutionResult:
        return await self._runner.run(workflow, payload, actor_id)

    async def check_workflow_triggers(self, event_type: str, payload: Mapping[str, Any]) -> None:
        """Run every workflow whose active trigger matches the event."""
        try:
            results = await self._trigger_evaluator.on_event(event_type, payload)
        except Exception as e:
            logger.error("Trigger evaluation failed", event_type=event_type, error=str(e))
            return
        if results:
            logger.info(
                "Triggered workflows finished",
                event_type=event_type,
                runs=len(results),
                failed=sum(1 for r in results if not r.success),
            )

    async def create_webhook_event(
        self,
        actor_id: Optional[str],
        event_type: str,
        entity_id: str,
        entity_type: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Ingest a business event and fan it out to matching triggers."""
        timestamp = datetime.now(timezone.utc)
        payload = dict(payload or {})
        event = {
            "id": f"{entity_type}_{entity_id}_{int(timestamp.timestamp() * 1000)}",
            "type": event_type,
            "timestamp": timestamp.isoformat(),
            "actorId": actor_id,
            "data": {
                "entityId": entity_id,
                "entityType": entity_type,
                "changes": payload,
            },
        }

        if self._event_publisher is not None:
            try:
                await self._event_publisher.publish(event)
            except Exception as e:
                logger.error("Failed to publish event", event_id=event["id"], error=str(e))

        await self.check_workflow_triggers(
            event_type,
            {**payload, "entityId": entity_id, "entityType": entity_type},
        )

    async def cancel_execution(self, execution_id: str) -> bool:
        """Cancel a running execution.

        Returns:
            True if cancelled, False if not found
        """
        return self._runner.cancel(execution_id)

    def get_running_executions(self) -> dict[str, dict]:
        """Get status of all running executions."""
        return self._runner.running()


# ─── Singleton ────────────────────────────────────────────────

_engine: Optional[WorkflowEngine] = None


def set_workflow_engine(engine: Optional[WorkflowEngine]) -> None:
    global _engine
    _engine = engine


def get_workflow_engine(factory: Optional[Callable[[], WorkflowEngine]] = None) -> WorkflowEngine:
    """Get or create the process-wide WorkflowEngine."""
    global _engine
    if _engine is None:
        if factory is None:
            raise FatalError("Workflow engine has not been configured")
        _engine = factory()
    return _engine
