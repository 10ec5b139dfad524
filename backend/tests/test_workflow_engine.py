"""Tests for the workflow execution engine."""

import asyncio

import pytest

from core.constants import StepStatus
from core.exceptions import TransientError, ValidationError
from workflow.definitions import WorkflowDefinition
from workflow.engine import ExecutionContext


def _workflow(*steps, **kwargs) -> WorkflowDefinition:
    data = {"id": "wf-1", "name": "Invoice follow-up", "steps": list(steps)}
    data.update(kwargs)
    return WorkflowDefinition.from_dict(data)


def _email(step_id="notify", **kwargs) -> dict:
    step = {
        "id": step_id,
        "name": step_id.title(),
        "type": "email",
        "configuration": {"to": "{{triggerData.email}}", "subject": "Invoice"},
        "timeout_seconds": 30,
        "retry_count": 0,
    }
    step.update(kwargs)
    return step


def _webhook(step_id="callback", **kwargs) -> dict:
    step = {
        "id": step_id,
        "name": step_id.title(),
        "type": "webhook",
        "configuration": {"url": "https://hooks.example.com/in"},
        "timeout_seconds": 30,
        "retry_count": 0,
        "retry_delay_seconds": 10,
    }
    step.update(kwargs)
    return step


async def _wait_for(predicate, attempts=200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition never became true")


@pytest.mark.unit
class TestExecutionContext:
    def test_scope_layers(self):
        ctx = ExecutionContext(
            workflow_id="wf-1",
            variables={"team": "finance", "lookup": "shadowed"},
            trigger_data={"amount": 10},
        )
        ctx.record_output("lookup", {"id": 7})
        scope = ctx.scope()
        assert scope["team"] == "finance"
        assert scope["triggerData"] == {"amount": 10}
        assert scope["lookup"] == {"id": 7}

    def test_variables_output_updates_variables(self):
        ctx = ExecutionContext(workflow_id="wf-1", variables={"owner": "nobody"})
        ctx.record_output("assign", {"variables": {"owner": "ana"}})
        assert ctx.scope()["owner"] == "ana"
        assert ctx.snapshot() == {"assign": {"variables": {"owner": "ana"}}}


# ─── Run outcomes ───

@pytest.mark.asyncio
class TestRunOutcomes:
    async def test_inactive_workflow_runs_nothing(self, engine, store, recorder, channels):
        store.add(_workflow(_email(), is_active=False))
        result = await engine.execute_workflow("wf-1", {"email": "a@b.com"})

        assert result.success is False
        assert "inactive" in result.error
        assert result.step_results == ()
        assert channels.email.calls == []
        assert recorder.executions == {}

    async def test_zero_steps(self, engine, store, recorder):
        store.add(_workflow())
        result = await engine.execute_workflow("wf-1")

        assert result.success is True
        assert result.output == {}
        assert recorder.executions[result.execution_id]["status"] == "completed"

    async def test_unknown_workflow(self, engine, recorder):
        result = await engine.execute_workflow("missing")
        assert result.success is False
        assert result.error == "Workflow missing not found"
        assert recorder.executions == {}

    async def test_record_creation_failure(self, engine, store, recorder, channels):
        store.add(_workflow(_email()))
        recorder.fail_create = True
        result = await engine.execute_workflow("wf-1", {"email": "a@b.com"})

        assert result.success is False
        assert result.error.startswith("Failed to create execution record")
        assert channels.email.calls == []

    async def test_failed_step_stops_the_run(self, engine, store, recorder, channels):
        channels.webhook.errors = [ValidationError("bad payload")]
        store.add(_workflow(_webhook(), _email()))
        result = await engine.execute_workflow("wf-1", {"email": "a@b.com"})

        assert result.success is False
        assert result.error == "Step 'Callback' (callback) failed: bad payload"
        assert [r.step_id for r in result.step_results] == ["callback"]
        assert channels.email.calls == []
        record = recorder.executions[result.execution_id]
        assert record["status"] == "failed"
        assert record["error"] == result.error

    async def test_outputs_flow_between_steps(self, engine, store, channels):
        store.add(_workflow(
            {"id": "analyze", "name": "Analyze", "type": "gpt", "configuration": {"query": "Assess {{client}}"}},
            _email(configuration={"to": "ops@example.com", "subject": "Risk: {{analyze.analysis.summary}}"}),
            variables={"client": "ACME"},
        ))
        result = await engine.execute_workflow("wf-1")

        assert result.success is True
        assert channels.ai.calls[0]["query"] == "Assess ACME"
        assert channels.email.calls[0]["subject"] == "Risk: late payer"
        assert set(result.output) == {"analyze", "notify"}

    async def test_set_variables_action(self, engine, store, channels):
        store.add(_workflow(
            {
                "id": "assign",
                "type": "action",
                "configuration": {"actionType": "set_variables", "variables": {"owner": "{{triggerData.owner}}"}},
            },
            _email(configuration={"to": "ops@example.com", "subject": "Assigned to {{owner}}"}),
            variables={"owner": "nobody"},
        ))
        await engine.execute_workflow("wf-1", {"owner": "Ana"})
        assert channels.email.calls[0]["subject"] == "Assigned to Ana"

    async def test_record_output_matches_result(self, engine, store, recorder):
        store.add(_workflow(_email()))
        result = await engine.execute_workflow("wf-1", {"email": "a@b.com"}, actor_id="user-1")

        record = recorder.executions[result.execution_id]
        assert record["actor_id"] == "user-1"
        assert record["trigger_data"] == {"email": "a@b.com"}
        assert record["output"] == result.output
        assert recorder.updates == [(result.execution_id, "completed")]


# ─── Conditions ───

@pytest.mark.asyncio
class TestConditionSteps:
    async def test_false_condition_skips_and_continues(self, engine, store, channels):
        store.add(_workflow(
            {
                "id": "big",
                "type": "condition",
                "conditions": {"triggerData.amount": {"operator": "greater_than", "value": 1000}},
            },
            _email(),
        ))
        result = await engine.execute_workflow("wf-1", {"amount": 500, "email": "a@b.com"})

        assert result.success is True
        condition = result.step_results[0]
        assert condition.status == StepStatus.SKIPPED
        assert condition.attempts == 1
        assert condition.output["passed"] is False
        assert result.output["big"]["result"] is False
        assert len(channels.email.calls) == 1

    async def test_true_condition_succeeds(self, engine, store):
        store.add(_workflow({"id": "big", "type": "condition", "conditions": {"triggerData.amount": 1500}}))
        result = await engine.execute_workflow("wf-1", {"amount": 1500})
        assert result.step_results[0].status == StepStatus.SUCCEEDED
        assert result.output["big"]["passed"] is True

    async def test_unknown_operator_fails_the_run(self, engine, store):
        store.add(_workflow({
            "id": "odd",
            "type": "condition",
            "conditions": {"amount": {"operator": "between", "value": [1, 2]}},
        }))
        result = await engine.execute_workflow("wf-1")
        assert result.success is False
        assert "between" in result.error

    async def test_guard_skips_step(self, engine, store, channels):
        store.add(_workflow(_email(conditions={"triggerData.vip": True})))
        result = await engine.execute_workflow("wf-1", {"vip": False, "email": "a@b.com"})

        assert result.success is True
        assert result.step_results[0].status == StepStatus.SKIPPED
        assert channels.email.calls == []


# ─── Retry and timeout ───

@pytest.mark.asyncio
class TestRetryAndTimeout:
    async def test_fails_n_times_then_succeeds(self, engine, store, channels, sleeper):
        channels.webhook.errors = [TransientError("502"), TransientError("502")]
        store.add(_workflow(_webhook(retry_count=2)))
        result = await engine.execute_workflow("wf-1")

        assert result.success is True
        assert result.step_results[0].attempts == 3
        assert len(channels.webhook.calls) == 3
        assert sleeper.sleeps == [10, 10]

    async def test_always_failing_uses_whole_budget(self, engine, store, channels, sleeper, recorder):
        channels.webhook.errors = [TransientError("503")] * 10
        store.add(_workflow(_webhook(retry_count=3, retry_delay_seconds=5)))
        result = await engine.execute_workflow("wf-1")

        assert result.success is False
        assert result.step_results[0].attempts == 4
        assert len(channels.webhook.calls) == 4
        assert sleeper.sleeps == [5, 5, 5]
        retry_logs = [e for _, _, e in recorder.logs if e["level"] == "warning"]
        assert len(retry_logs) == 3

    async def test_exponential_backoff(self, engine, store, channels, sleeper):
        channels.webhook.errors = [TransientError("503")] * 3
        store.add(_workflow(_webhook(retry_count=3, retry_delay_seconds=2, retry_backoff="exponential")))
        result = await engine.execute_workflow("wf-1")

        assert result.success is True
        assert sleeper.sleeps == [2, 4, 8]

    async def test_validation_error_is_not_retried(self, engine, store, channels):
        channels.webhook.errors = [ValidationError("HTTP 400")]
        store.add(_workflow(_webhook(retry_count=3)))
        result = await engine.execute_workflow("wf-1")

        assert result.success is False
        assert result.step_results[0].attempts == 1

    async def test_unknown_action_type_is_not_retried(self, engine, store):
        store.add(_workflow({
            "id": "act", "type": "action", "retry_count": 2,
            "configuration": {"actionType": "does_not_exist"},
        }))
        result = await engine.execute_workflow("wf-1")
        assert result.success is False
        assert result.step_results[0].attempts == 1
        assert "does_not_exist" in result.error

    async def test_timeout_consumes_an_attempt(self, engine, store, channels):
        channels.webhook.gate = asyncio.Event()
        store.add(_workflow(_webhook(timeout_seconds=0.05, retry_count=1, retry_delay_seconds=0)))
        result = await engine.execute_workflow("wf-1")

        assert result.success is False
        assert result.step_results[0].attempts == 2
        assert "timed out" in result.error

    async def test_delay_longer_than_step_timeout(self, engine, store, sleeper):
        store.add(_workflow({
            "id": "wait", "type": "delay", "timeout_seconds": 1,
            "configuration": {"duration": "5 minutes"},
        }))
        result = await engine.execute_workflow("wf-1")
        assert result.success is True
        assert sleeper.sleeps == [300.0]


# ─── Dry run ───

@pytest.mark.asyncio
class TestDryRun:
    async def test_no_execution_record(self, engine, store, recorder, channels):
        store.add(_workflow(_email()))
        result = await engine.test_workflow("wf-1", {"email": "a@b.com"})

        assert result.success is True
        assert result.dry_run is True
        assert result.execution_id is None
        assert recorder.executions == {}
        assert recorder.updates == []
        assert recorder.logs == []
        assert len(channels.email.calls) == 1

    async def test_steps_can_be_skipped(self, make_engine, store, recorder, channels):
        engine = make_engine(dry_run_dispatches_steps=False)
        store.add(_workflow(
            {"id": "check", "type": "condition", "conditions": {"triggerData.amount": 10}},
            _email(),
        ))
        result = await engine.test_workflow("wf-1", {"amount": 10, "email": "a@b.com"})

        assert result.success is True
        assert [r.status for r in result.step_results] == [StepStatus.SUCCEEDED, StepStatus.SKIPPED]
        assert channels.email.calls == []
        assert recorder.executions == {}

    async def test_failed_dry_run(self, engine, store, recorder, channels):
        channels.email.errors = [ValidationError("rejected")]
        store.add(_workflow(_email()))
        result = await engine.test_workflow("wf-1", {"email": "a@b.com"})

        assert result.success is False
        assert result.dry_run is True
        assert recorder.updates == []


# ─── Execution trail ───

@pytest.mark.asyncio
class TestExecutionTrail:
    async def test_log_entries(self, engine, store, recorder):
        store.add(_workflow(_email()))
        result = await engine.execute_workflow("wf-1", {"email": "a@b.com"})

        assert recorder.messages(result.execution_id) == [
            "Execution of 'Invoice follow-up' started",
            "Step 'Notify' started",
            "Step 'Notify' completed",
            "Execution completed",
        ]
        step_ids = [step_id for _, step_id, _ in recorder.logs]
        assert step_ids == [None, "notify", "notify", None]
        for _, _, event in recorder.logs:
            assert set(event) == {"level", "message", "details", "timestamp"}

    async def test_failure_is_logged(self, engine, store, recorder, channels):
        channels.email.errors = [ValidationError("rejected")]
        store.add(_workflow(_email()))
        result = await engine.execute_workflow("wf-1", {"email": "a@b.com"})

        levels = [e["level"] for _, _, e in recorder.logs]
        assert levels[-2:] == ["error", "error"]
        assert recorder.messages(result.execution_id)[-1] == "Execution failed"


# ─── Cancellation ───

@pytest.mark.asyncio
class TestCancellation:
    async def test_cancel_running_execution(self, engine, store, recorder, channels):
        channels.webhook.gate = asyncio.Event()
        store.add(_workflow(_webhook(), _email()))
        task = asyncio.create_task(engine.execute_workflow("wf-1", {"email": "a@b.com"}))
        await _wait_for(lambda: channels.webhook.calls)

        running = engine.get_running_executions()
        assert len(running) == 1
        execution_id, info = next(iter(running.items()))
        assert info["current_step"] == "callback"
        assert info["state"] == "running"

        assert await engine.cancel_execution(execution_id) is True
        result = await task

        assert result.success is False
        assert result.error == "Execution cancelled"
        assert recorder.executions[execution_id]["status"] == "cancelled"
        assert channels.email.calls == []
        assert engine.get_running_executions() == {}

    async def test_cancel_unknown_execution(self, engine):
        assert await engine.cancel_execution("nope") is False

    async def test_task_cancellation_updates_record(self, engine, store, recorder, channels):
        channels.webhook.gate = asyncio.Event()
        store.add(_workflow(_webhook()))
        task = asyncio.create_task(engine.execute_workflow("wf-1"))
        await _wait_for(lambda: channels.webhook.calls)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        (record,) = recorder.executions.values()
        assert record["status"] == "cancelled"
        assert record["error"] == "Execution cancelled"


# ─── End-to-end scenarios ───

@pytest.mark.asyncio
class TestScenarios:
    async def test_single_email_step(self, engine, store):
        store.add(_workflow(_email()))
        result = await engine.execute_workflow("wf-1", {"email": "a@b.com"})
        assert result.success is True
        assert result.execution_id == "exec-1"

    async def test_webhook_recovers_after_two_failures(self, engine, store, channels):
        channels.webhook.errors = [TransientError("timeout"), TransientError("timeout")]
        store.add(_workflow(_webhook(retry_count=2)))
        result = await engine.execute_workflow("wf-1")
        assert result.success is True
        assert len(channels.webhook.calls) == 3

    async def test_trigger_data_is_interpolated_before_dispatch(self, engine, store, channels):
        store.add(_workflow(_email(configuration={"to": "{{triggerData.email}}"})))
        await engine.execute_workflow("wf-1", {"email": "a@b.com"})
        assert channels.email.calls == [{"to": "a@b.com"}]

    async def test_concurrent_runs_are_isolated(self, engine, store, channels):
        store.add(_workflow(_email()))
        first, second = await asyncio.gather(
            engine.execute_workflow("wf-1", {"email": "one@example.com"}),
            engine.execute_workflow("wf-1", {"email": "two@example.com"}),
        )
        assert first.output["notify"]["to"] == "one@example.com"
        assert second.output["notify"]["to"] == "two@example.com"
        assert first.execution_id != second.execution_id
