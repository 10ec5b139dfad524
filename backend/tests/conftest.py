"""Shared pytest fixtures for the automation engine test suite.

Provides:
- In-memory async SQLite database (no PostgreSQL needed for tests)
- Recording fakes for the engine ports (store, recorder, sleeper, channels)
- Engine factory wired to the fakes
- FastAPI app and test client (httpx.AsyncClient) wired to the test database
"""

import asyncio
import itertools
import os
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Mapping, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("ENGINE_DISPATCH_MODE", "inline")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("WEBHOOK_SIGNING_SECRET", "whsec_test_secret")

from core.constants import TERMINAL_EXECUTION_STATUSES  # noqa: E402
from core.exceptions import CancellationError, NotFoundError  # noqa: E402
from db.base import Base  # noqa: E402
from db.database import create_session_factory  # noqa: E402
from tasks.registry import ActionRegistry  # noqa: E402
from workflow.definitions import TriggerDefinition, WorkflowDefinition  # noqa: E402
from workflow.engine import EngineOptions, WorkflowEngine  # noqa: E402
from workflow.ports import (  # noqa: E402
    AIAnalysisClient,
    EmailSender,
    ExecutionRecorder,
    NotificationCreator,
    StepCollaborators,
    WebhookClient,
    WorkflowStore,
)
from workflow.retry_strategies import Sleeper  # noqa: E402


# ---------------------------------------------------------------------------
# Fakes for the engine ports
# ---------------------------------------------------------------------------

class InMemoryStore(WorkflowStore):
    def __init__(self):
        self.workflows: dict[str, WorkflowDefinition] = {}
        self.triggers: list[TriggerDefinition] = []

    def add(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        self.workflows[workflow.id] = workflow
        return workflow

    def add_trigger(self, trigger: TriggerDefinition) -> TriggerDefinition:
        self.triggers.append(trigger)
        return trigger

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        if workflow_id not in self.workflows:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return self.workflows[workflow_id]

    async def get_triggers(self, event_type: str) -> list[TriggerDefinition]:
        return [t for t in self.triggers if t.event_type == event_type and t.is_active]


class RecordingRecorder(ExecutionRecorder):
    """Keeps executions and log entries in memory; first terminal status wins."""

    def __init__(self):
        self.executions: dict[str, dict[str, Any]] = {}
        self.updates: list[tuple[str, str]] = []
        self.logs: list[tuple[str, Optional[str], dict]] = []
        self.fail_create = False
        self._ids = itertools.count(1)

    async def create_execution(self, workflow_id, actor_id, trigger_data=None) -> str:
        if self.fail_create:
            raise RuntimeError("database unavailable")
        execution_id = f"exec-{next(self._ids)}"
        self.executions[execution_id] = {
            "workflow_id": workflow_id,
            "actor_id": actor_id,
            "trigger_data": dict(trigger_data or {}),
            "status": "running",
            "output": None,
            "error": None,
        }
        return execution_id

    async def update_execution(self, execution_id, status, output=None, error=None) -> None:
        self.updates.append((execution_id, status))
        record = self.executions[execution_id]
        if record["status"] in TERMINAL_EXECUTION_STATUSES:
            return
        record.update(status=status, output=dict(output or {}), error=error)

    async def append_log(self, execution_id, step_id, event) -> None:
        self.logs.append((execution_id, step_id, dict(event)))

    def messages(self, execution_id: str) -> list[str]:
        return [event["message"] for eid, _, event in self.logs if eid == execution_id]


class VirtualSleeper(Sleeper):
    """Records requested waits instead of sleeping."""

    def __init__(self):
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float, cancel_event: Optional[asyncio.Event] = None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError()
        self.sleeps.append(seconds)
        await asyncio.sleep(0)
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError()


class ScriptedChannel(EmailSender, WebhookClient, NotificationCreator, AIAnalysisClient):
    """Records every call; raises the scripted errors first, then answers ``response``.

    When ``gate`` is set, each call waits for it before answering.
    """

    def __init__(self, response: Optional[Mapping[str, Any]] = None, errors=(), gate=None):
        self.response = dict(response or {})
        self.errors = list(errors)
        self.gate: Optional[asyncio.Event] = gate
        self.calls: list[dict] = []

    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        self.calls.append(dict(config))
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        return dict(self.response)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def recorder() -> RecordingRecorder:
    return RecordingRecorder()


@pytest.fixture
def sleeper() -> VirtualSleeper:
    return VirtualSleeper()


@pytest.fixture
def channels() -> SimpleNamespace:
    return SimpleNamespace(
        email=ScriptedChannel({"sent": True, "message_id": "<msg-1@test>"}),
        webhook=ScriptedChannel({"status": 200, "response": {"ok": True}}),
        notification=ScriptedChannel({"sent": True, "notification_id": "notif-1"}),
        ai=ScriptedChannel({
            "response": '{"summary": "late payer"}',
            "analysis": {"summary": "late payer"},
            "confidence": 0.9,
        }),
    )


@pytest.fixture
def collaborators(channels) -> StepCollaborators:
    return StepCollaborators(
        email=channels.email,
        webhook=channels.webhook,
        notification=channels.notification,
        ai=channels.ai,
        actions=ActionRegistry(),
    )


@pytest.fixture
def make_engine(store, recorder, collaborators, sleeper):
    """Build a WorkflowEngine on the fakes; keyword args become EngineOptions."""

    def _make(**options) -> WorkflowEngine:
        return WorkflowEngine(
            store=store,
            recorder=recorder,
            collaborators=collaborators,
            sleeper=sleeper,
            options=EngineOptions(**options),
        )

    return _make


@pytest.fixture
def engine(make_engine) -> WorkflowEngine:
    return make_engine()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test; StaticPool shares one connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    # Import all models so Base.metadata knows about them
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_engine(session_factory, channels, sleeper) -> WorkflowEngine:
    """Engine on the test database, with fake outbound channels."""
    from notifications.channels import InAppChannel
    from services.engine_adapters import DatabaseExecutionRecorder, DatabaseWorkflowStore

    return WorkflowEngine(
        store=DatabaseWorkflowStore(session_factory),
        recorder=DatabaseExecutionRecorder(session_factory),
        collaborators=StepCollaborators(
            email=channels.email,
            webhook=channels.webhook,
            notification=InAppChannel(session_factory),
            ai=channels.ai,
            actions=ActionRegistry(),
        ),
        sleeper=sleeper,
    )


@pytest_asyncio.fixture
async def app(db_engine, session_factory, api_engine):
    """Create a FastAPI app instance wired to the test database."""
    # Patch the database module to use our test engine
    import db.database as db_mod
    original_engine = db_mod.engine
    original_session = db_mod.AsyncSessionLocal
    db_mod.engine = db_engine
    db_mod.AsyncSessionLocal = session_factory

    from app.dependencies import get_engine
    from app.main import create_app

    test_app = create_app()
    test_app.dependency_overrides[get_engine] = lambda: api_engine

    yield test_app

    test_app.dependency_overrides.clear()
    db_mod.engine = original_engine
    db_mod.AsyncSessionLocal = original_session


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac
