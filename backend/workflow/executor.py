"""Step Executor: dispatches one workflow step to its type handler.

The executor is pure dispatch: it receives a step whose configuration has
already been interpolated, calls the matching collaborator, and returns
the step output or raises a typed error. Retries, timeouts and condition
steps are handled by the runner (see ``workflow.engine``).

Error taxonomy:
    ValidationError    bad or missing configuration, not retried
    ConfigurationError unknown action type, not retried
    TransientError     network failure / timeout, retried per step policy
    FatalError         unknown step type or missing collaborator
"""

import asyncio
import re
from typing import TYPE_CHECKING, Any, Mapping, Optional

import structlog

from core.constants import TRIGGER_DATA_KEY, StepType
from core.exceptions import (
    ConfigurationError,
    FatalError,
    ValidationError,
    error_for_http_status,
)
from workflow.definitions import StepDefinition
from workflow.interpolation import interpolate
from workflow.ports import StepCollaborators
from workflow.retry_strategies import AsyncioSleeper, Sleeper

if TYPE_CHECKING:
    from workflow.engine import ExecutionContext

logger = structlog.get_logger(__name__)

DEFAULT_DELAY_MAX_SECONDS = 86400.0

_DURATION_RE = re.compile(
    r"^\s*(\d+(?:\.\d+)?)\s*(second|sec|minute|min|hour|day)s?\s*$",
    re.IGNORECASE,
)
_UNIT_SECONDS = {
    "second": 1,
    "sec": 1,
    "minute": 60,
    "min": 60,
    "hour": 3600,
    "day": 86400,
}


def parse_duration(value: Any) -> float:
    """Convert a delay expression into seconds.

    Accepts a number of seconds (int, float or numeric string) or a
    phrase such as ``"5 minutes"`` / ``"1 day"``.

    Raises:
        ValidationError: for anything else, or a negative duration.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Invalid delay duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        match = _DURATION_RE.match(text)
        if match:
            seconds = float(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
        else:
            try:
                seconds = float(text)
            except ValueError:
                raise ValidationError(f"Invalid delay duration: {value!r}")

    if seconds < 0:
        raise ValidationError(f"Delay duration must not be negative: {value!r}")
    return seconds


class StepExecutor:
    """Executes individual workflow steps by delegating to collaborators.

    Collaborators are injected once at construction; a step whose
    collaborator is missing fails with ``FatalError``.
    """

    def __init__(
        self,
        collaborators: Optional[StepCollaborators] = None,
        sleeper: Optional[Sleeper] = None,
        delay_max_seconds: float = DEFAULT_DELAY_MAX_SECONDS,
    ):
        self._collaborators = collaborators or StepCollaborators()
        self._sleeper = sleeper or AsyncioSleeper()
        self._delay_max_seconds = delay_max_seconds
        self._handlers = {
            StepType.EMAIL: self._execute_email,
            StepType.WEBHOOK: self._execute_webhook,
            StepType.DELAY: self._execute_delay,
            StepType.NOTIFICATION: self._execute_notification,
            StepType.GPT: self._execute_gpt,
            StepType.ACTION: self._execute_action,
        }

    @property
    def collaborators(self) -> StepCollaborators:
        return self._collaborators

    async def execute(
        self,
        step: StepDefinition,
        config: Mapping[str, Any],
        context: Optional["ExecutionContext"] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Execute a single step.

        Args:
            step: Step definition (type, parameters)
            config: Step configuration with placeholders already resolved
            context: Execution context of the run, if any
            cancel_event: Run-wide cancellation signal

        Returns:
            The step output stored under the step id.
        """
        if step.type == StepType.CONDITION:
            raise FatalError(f"Condition step {step.id} cannot be dispatched")

        handler = self._handlers.get(step.type)
        if handler is None:
            raise FatalError(f"Unknown step type: {step.type}")

        logger.debug("Dispatching step", step_id=step.id, step_type=step.type.value)
        return await handler(step, dict(config), context, cancel_event)

    def _require(self, name: str, step: StepDefinition):
        collaborator = getattr(self._collaborators, name)
        if collaborator is None:
            raise FatalError(f"No {name} collaborator configured for step {step.id}")
        return collaborator

    # ─── Delivery steps ───────────────────────────────────────

    async def _execute_email(self, step, config, context, cancel_event) -> dict:
        sender = self._require("email", step)
        if not config.get("to"):
            raise ValidationError(f"Email step {step.id} has no recipient")

        receipt = await sender.send(config) or {}
        return {
            "type": StepType.EMAIL.value,
            "to": config.get("to"),
            "subject": config.get("subject"),
            "template": config.get("template"),
            "sent": receipt.get("sent", True),
            "message_id": receipt.get("message_id"),
        }

    async def _execute_webhook(self, step, config, context, cancel_event) -> dict:
        client = self._require("webhook", step)
        url = config.get("url")
        if not url:
            raise ValidationError(f"Webhook step {step.id} has no url")

        body = config.get("body")
        if body is None or isinstance(body, Mapping):
            body = {**self._default_webhook_payload(context), **(body or {})}

        request = {
            **config,
            "url": url,
            "method": str(config.get("method") or "POST").upper(),
            "headers": dict(config.get("headers") or {}),
            "body": body,
        }
        response = await client.send(request) or {}

        status = response.get("status")
        if isinstance(status, int):
            error = error_for_http_status(status, url)
            if error is not None:
                raise error

        return {
            "type": StepType.WEBHOOK.value,
            "url": url,
            "status": status,
            "response": response.get("response"),
            "success": True,
        }

    @staticmethod
    def _default_webhook_payload(context: Optional["ExecutionContext"]) -> dict:
        if context is None:
            return {}
        return {
            "executionId": context.execution_id,
            "workflowId": context.workflow_id,
            TRIGGER_DATA_KEY: context.trigger_data,
            "stepResults": dict(context.step_outputs),
        }

    async def _execute_notification(self, step, config, context, cancel_event) -> dict:
        creator = self._require("notification", step)
        if not config.get("title") and not config.get("message"):
            raise ValidationError(f"Notification step {step.id} needs a title or message")

        receipt = await creator.send(config) or {}
        return {
            "type": StepType.NOTIFICATION.value,
            "notification_id": receipt.get("notification_id"),
            "sent": receipt.get("sent", True),
        }

    async def _execute_gpt(self, step, config, context, cancel_event) -> dict:
        client = self._require("ai", step)
        query = config.get("query") or config.get("prompt")
        if not query:
            raise ValidationError(f"AI step {step.id} has no query or prompt")

        analysis = await client.send({**config, "query": query}) or {}
        return {
            "type": StepType.GPT.value,
            "query": query,
            "response": analysis.get("response"),
            "analysis": analysis.get("analysis"),
            "confidence": analysis.get("confidence"),
        }

    # ─── Built-in steps ───────────────────────────────────────

    async def _execute_delay(self, step, config, context, cancel_event) -> dict:
        """Suspend the run; the only failure mode is cancellation."""
        raw = config.get("duration", config.get("seconds"))
        seconds = parse_duration(raw)
        delayed = min(seconds, self._delay_max_seconds)
        if delayed < seconds:
            logger.warning(
                "Delay capped", step_id=step.id, requested=seconds, capped_to=delayed,
            )
        await self._sleeper.sleep(delayed, cancel_event)
        return {
            "type": StepType.DELAY.value,
            "duration": raw,
            "delayed_seconds": delayed,
        }

    async def _execute_action(self, step, config, context, cancel_event) -> Any:
        registry = self._require("actions", step)
        action_type = config.get("actionType")
        if not action_type:
            raise ConfigurationError(f"Action step {step.id} has no actionType")

        handler = registry.create_instance(action_type)
        if handler is None:
            raise ConfigurationError(f"Unknown action type: {action_type}")

        scope = context.scope() if context is not None else {}
        parameters = interpolate(dict(step.parameters), scope)
        output = await handler.run({**parameters, **config}, scope)

        if not isinstance(output, Mapping):
            return {"type": StepType.ACTION.value, "action": action_type, "result": output}
        output = dict(output)
        output.setdefault("type", StepType.ACTION.value)
        output.setdefault("action", action_type)
        return output
