"""FastAPI dependency injection functions."""

from typing import AsyncIterator, Optional

import structlog
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from db import database
from services.dispatch_service import DispatchService
from services.engine_adapters import build_workflow_engine
from workflow.engine import WorkflowEngine, get_workflow_engine

logger = structlog.get_logger(__name__)


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with database.AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error("Database session rolled back", error=str(e))
            await session.rollback()
            raise


async def get_actor_id(
    x_actor_id: Optional[str] = Header(default=None, description="Acting user or system"),
) -> Optional[str]:
    """Actor identity; authentication happens in front of this service."""
    return x_actor_id or None


def get_engine() -> WorkflowEngine:
    """The process-wide WorkflowEngine, built on first use."""
    return get_workflow_engine(factory=lambda: build_workflow_engine(database.AsyncSessionLocal))


def get_dispatcher(engine: WorkflowEngine = Depends(get_engine)) -> DispatchService:
    return DispatchService(engine)
