"""Tests for per-type step dispatch."""

import pytest

from core.constants import StepType
from core.exceptions import ConfigurationError, FatalError, TransientError, ValidationError
from workflow.definitions import StepDefinition
from workflow.engine import ExecutionContext
from workflow.executor import StepExecutor, parse_duration
from workflow.ports import StepCollaborators


def _step(step_type, **kwargs) -> StepDefinition:
    kwargs.setdefault("id", f"{step_type}-1")
    kwargs.setdefault("name", kwargs["id"])
    return StepDefinition(type=StepType(step_type), **kwargs)


@pytest.fixture
def executor(collaborators, sleeper) -> StepExecutor:
    return StepExecutor(collaborators=collaborators, sleeper=sleeper, delay_max_seconds=3600)


@pytest.fixture
def context() -> ExecutionContext:
    ctx = ExecutionContext(
        workflow_id="wf-1",
        execution_id="exec-1",
        variables={"team": "finance"},
        trigger_data={"clientEmail": "ana@example.com"},
    )
    ctx.record_output("lookup", {"invoice_id": "INV-7"})
    return ctx


@pytest.mark.unit
class TestParseDuration:
    @pytest.mark.parametrize("value, seconds", [
        (30, 30.0),
        (1.5, 1.5),
        ("45", 45.0),
        ("5 minutes", 300.0),
        ("1 min", 60.0),
        ("2 hours", 7200.0),
        ("1 day", 86400.0),
        ("10 seconds", 10.0),
    ])
    def test_valid(self, value, seconds):
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", ["soon", None, True, -5, "3 fortnights"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_duration(value)


@pytest.mark.asyncio
class TestEmailStep:
    async def test_sends_and_reports(self, executor, channels, context):
        config = {"to": "ana@example.com", "subject": "Invoice due", "template": "reminder"}
        output = await executor.execute(_step("email"), config, context=context)

        assert channels.email.calls == [config]
        assert output == {
            "type": "email",
            "to": "ana@example.com",
            "subject": "Invoice due",
            "template": "reminder",
            "sent": True,
            "message_id": "<msg-1@test>",
        }

    async def test_missing_recipient(self, executor, channels):
        with pytest.raises(ValidationError):
            await executor.execute(_step("email"), {"subject": "no one"})
        assert channels.email.calls == []

    async def test_channel_error_propagates(self, executor, channels):
        channels.email.errors = [TransientError("SMTP down")]
        with pytest.raises(TransientError):
            await executor.execute(_step("email"), {"to": "a@b.c"})


@pytest.mark.asyncio
class TestWebhookStep:
    async def test_default_body(self, executor, channels, context):
        output = await executor.execute(
            _step("webhook"), {"url": "https://hooks.example.com/in", "method": "put"}, context=context,
        )
        request = channels.webhook.calls[0]
        assert request["method"] == "PUT"
        assert request["body"] == {
            "executionId": "exec-1",
            "workflowId": "wf-1",
            "triggerData": {"clientEmail": "ana@example.com"},
            "stepResults": {"lookup": {"invoice_id": "INV-7"}},
        }
        assert output["status"] == 200
        assert output["response"] == {"ok": True}
        assert output["success"] is True

    async def test_configured_body_is_merged(self, executor, channels, context):
        await executor.execute(
            _step("webhook"),
            {"url": "https://hooks.example.com/in", "body": {"workflowId": "override", "extra": 1}},
            context=context,
        )
        body = channels.webhook.calls[0]["body"]
        assert body["workflowId"] == "override"
        assert body["extra"] == 1
        assert body["executionId"] == "exec-1"

    async def test_non_mapping_body_is_sent_as_is(self, executor, channels, context):
        await executor.execute(
            _step("webhook"), {"url": "https://hooks.example.com/in", "body": "raw"}, context=context,
        )
        assert channels.webhook.calls[0]["body"] == "raw"

    async def test_client_error_status_is_not_retryable(self, executor, channels):
        channels.webhook.response = {"status": 404}
        with pytest.raises(ValidationError, match="HTTP 404"):
            await executor.execute(_step("webhook"), {"url": "https://hooks.example.com/in"})

    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_server_error_status_is_transient(self, executor, channels, status):
        channels.webhook.response = {"status": status}
        with pytest.raises(TransientError):
            await executor.execute(_step("webhook"), {"url": "https://hooks.example.com/in"})

    async def test_missing_url(self, executor):
        with pytest.raises(ValidationError):
            await executor.execute(_step("webhook"), {"method": "POST"})


@pytest.mark.asyncio
class TestNotificationAndGptSteps:
    async def test_notification(self, executor, channels):
        output = await executor.execute(_step("notification"), {"title": "Paid", "user_id": "u-1"})
        assert channels.notification.calls == [{"title": "Paid", "user_id": "u-1"}]
        assert output == {"type": "notification", "notification_id": "notif-1", "sent": True}

    async def test_notification_needs_text(self, executor):
        with pytest.raises(ValidationError):
            await executor.execute(_step("notification"), {"user_id": "u-1"})

    async def test_gpt_prompt_alias(self, executor, channels):
        output = await executor.execute(_step("gpt"), {"prompt": "Summarize the client history"})
        assert channels.ai.calls[0]["query"] == "Summarize the client history"
        assert output["type"] == "gpt"
        assert output["analysis"] == {"summary": "late payer"}
        assert output["confidence"] == 0.9

    async def test_gpt_needs_query(self, executor):
        with pytest.raises(ValidationError):
            await executor.execute(_step("gpt"), {"analysis_type": "risk"})


@pytest.mark.asyncio
class TestDelayStep:
    async def test_waits_through_sleeper(self, executor, sleeper):
        output = await executor.execute(_step("delay"), {"duration": "5 minutes"})
        assert sleeper.sleeps == [300.0]
        assert output == {"type": "delay", "duration": "5 minutes", "delayed_seconds": 300.0}

    async def test_seconds_alias(self, executor, sleeper):
        await executor.execute(_step("delay"), {"seconds": 2})
        assert sleeper.sleeps == [2.0]

    async def test_capped(self, executor, sleeper):
        output = await executor.execute(_step("delay"), {"duration": "2 days"})
        assert sleeper.sleeps == [3600]
        assert output["delayed_seconds"] == 3600

    async def test_invalid_duration(self, executor, sleeper):
        with pytest.raises(ValidationError):
            await executor.execute(_step("delay"), {"duration": "later"})
        assert sleeper.sleeps == []


@pytest.mark.asyncio
class TestActionStep:
    async def test_log_action(self, executor, context):
        output = await executor.execute(
            _step("action"), {"actionType": "log", "message": "checked {{team}}"}, context=context,
        )
        assert output["action"] == "log"
        assert output["type"] == "action"

    async def test_parameters_are_interpolated(self, executor, context):
        step = _step("action", parameters={"variables": {"owner": "{{team}}"}})
        output = await executor.execute(step, {"actionType": "set_variables"}, context=context)
        assert output["variables"] == {"owner": "finance"}

    async def test_missing_action_type(self, executor):
        with pytest.raises(ConfigurationError):
            await executor.execute(_step("action"), {})

    async def test_unknown_action_type(self, executor):
        with pytest.raises(ConfigurationError, match="send_invoice"):
            await executor.execute(_step("action"), {"actionType": "send_invoice"})


@pytest.mark.asyncio
class TestDispatchErrors:
    async def test_missing_collaborator_is_fatal(self, sleeper):
        executor = StepExecutor(collaborators=StepCollaborators(), sleeper=sleeper)
        with pytest.raises(FatalError):
            await executor.execute(_step("email"), {"to": "a@b.c"})

    async def test_condition_steps_are_not_dispatched(self, executor):
        step = _step("condition", conditions={"a": 1})
        with pytest.raises(FatalError):
            await executor.execute(step, {})
