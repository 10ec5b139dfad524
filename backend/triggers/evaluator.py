"""Trigger Evaluator: matches inbound business events to workflows.

For an event ``(event_type, payload)``:
1. load the active triggers registered for ``event_type``
2. evaluate each trigger's conditions against the payload
3. for each match, load the workflow and run it with the payload
   as ``triggerData`` (matches run concurrently)

No match means no side effects at all.
"""

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional

import structlog

from core.exceptions import AutomationError
from triggers.base import TriggerEvent, TriggerResult
from workflow.conditions import evaluate_conditions
from workflow.definitions import TriggerDefinition, WorkflowDefinition
from workflow.ports import WorkflowStore
from workflow.results import ExecutionResult

logger = structlog.get_logger(__name__)

RunCallback = Callable[
    [WorkflowDefinition, Mapping[str, Any], Optional[str]],
    Awaitable[ExecutionResult],
]


class TriggerEvaluator:
    """Routes events to the workflows whose triggers they satisfy."""

    def __init__(self, store: WorkflowStore, run_callback: RunCallback):
        self._store = store
        self._run_callback = run_callback

    def matching(
        self,
        triggers: list[TriggerDefinition],
        event_type: str,
        payload: Mapping[str, Any],
    ) -> list[TriggerDefinition]:
        """Filter ``triggers`` down to the active ones whose conditions hold."""
        matched = []
        for trigger in triggers:
            if not trigger.is_active or trigger.event_type != event_type:
                continue
            try:
                if evaluate_conditions(trigger.conditions, payload):
                    matched.append(trigger)
                else:
                    logger.debug("Trigger conditions not met", trigger_id=trigger.id)
            except AutomationError as e:
                logger.warning("Invalid trigger conditions", trigger_id=trigger.id, error=e.message)
        return matched

    async def on_event(self, event_type: str, payload: Mapping[str, Any]) -> list[ExecutionResult]:
        """Run every workflow whose trigger matches the event.

        Returns:
            One ExecutionResult per matched trigger, in trigger order.
        """
        try:
            triggers = await self._store.get_triggers(event_type)
        except Exception as e:
            logger.error("Failed to load triggers", event_type=event_type, error=str(e))
            return []

        matched = self.matching(triggers, event_type, payload)
        if not matched:
            logger.debug("No triggers matched", event_type=event_type, candidates=len(triggers))
            return []

        logger.info("Triggers matched", event_type=event_type, matched=len(matched))
        events = [
            TriggerEvent(
                trigger_id=trigger.id,
                workflow_id=trigger.workflow_id,
                event_type=event_type,
                actor_id=trigger.owner_id,
                payload=dict(payload),
            )
            for trigger in matched
        ]
        outcomes = await asyncio.gather(
            *(self._fire(event) for event in events),
            return_exceptions=True,
        )

        results: list[ExecutionResult] = []
        for event, outcome in zip(events, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error("Triggered run crashed", trigger_id=event.trigger_id, error=str(outcome))
                outcome = ExecutionResult.failure(str(outcome) or type(outcome).__name__)
            results.append(outcome)
        return results

    async def _fire(self, event: TriggerEvent) -> ExecutionResult:
        try:
            workflow = await self._store.get_workflow(event.workflow_id)
        except Exception as e:
            message = e.message if isinstance(e, AutomationError) else str(e)
            logger.warning(
                "Failed to load triggered workflow",
                trigger_id=event.trigger_id,
                workflow_id=event.workflow_id,
                error=message,
            )
            return ExecutionResult.failure(message or "Failed to load workflow")

        if not workflow.is_active:
            logger.info(
                "Trigger matched inactive workflow",
                trigger_id=event.trigger_id,
                workflow_id=workflow.id,
            )

        result = await self._run_callback(workflow, event.payload, event.actor_id)
        outcome = TriggerResult(
            success=result.success,
            message="Workflow executed" if result.success else "Workflow execution failed",
            trigger_id=event.trigger_id,
            workflow_id=workflow.id,
            execution_id=result.execution_id,
            error=result.error,
        )
        logger.info(
            "Trigger fired",
            trigger_id=outcome.trigger_id,
            workflow_id=outcome.workflow_id,
            execution_id=outcome.execution_id,
            success=outcome.success,
        )
        return result
