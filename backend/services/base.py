"""Base CRUD service with soft-delete aware queries.

All service classes inherit from this. Provides standard
create/read/update/delete with automatic soft-delete filtering,
pagination and optional owner scoping.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Generic CRUD service for any SQLAlchemy model.

    Services only flush; committing is the caller's unit of work
    (request dependency or engine adapter).

    Usage:
        class TriggerService(BaseService[Trigger]):
            def __init__(self, db: AsyncSession):
                super().__init__(Trigger, db)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(
        self,
        id: str,
        include_deleted: bool = False,
    ) -> Optional[ModelType]:
        """Get a single record by ID."""
        query = select(self.model).where(self.model.id == id)
        if not include_deleted:
            query = query.where(self.model.is_deleted == False)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list(
        self,
        owner_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
        order_by: str = "created_at",
        order_desc: bool = True,
        include_deleted: bool = False,
        filters: Optional[dict[str, Any]] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """List records with pagination, filtering, and sorting.

        Returns:
            Tuple of (items, total_count)
        """
        conditions = []
        if owner_id and hasattr(self.model, "owner_id"):
            conditions.append(self.model.owner_id == owner_id)
        if not include_deleted:
            conditions.append(self.model.is_deleted == False)  # noqa: E712
        for field, value in (filters or {}).items():
            if not hasattr(self.model, field):
                continue
            col = getattr(self.model, field)
            conditions.append(col.in_(value) if isinstance(value, list) else col == value)

        query = select(self.model).where(*conditions)
        count_query = select(func.count()).select_from(self.model).where(*conditions)

        if hasattr(self.model, order_by):
            col = getattr(self.model, order_by)
            query = query.order_by(col.desc() if order_desc else col.asc())

        query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        items = result.scalars().all()

        count_result = await self.db.execute(count_query)
        total = count_result.scalar() or 0

        return items, total

    # ─── Create ────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Create a new record and flush it to obtain defaults."""
        data.setdefault("id", str(uuid4()))
        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        return instance

    # ─── Update ────────────────────────────────────────────

    async def update(self, id: str, data: dict[str, Any]) -> Optional[ModelType]:
        """Update a record by ID (None values are skipped).

        Returns:
            Updated model instance or None if not found
        """
        instance = await self.get_by_id(id)
        if not instance:
            return None

        for key, value in data.items():
            if value is not None and hasattr(instance, key):
                setattr(instance, key, value)

        await self.db.flush()
        return instance

    # ─── Delete ────────────────────────────────────────────

    async def soft_delete(self, id: str) -> bool:
        """Soft-delete a record (set is_deleted=True).

        Returns:
            True if deleted, False if not found
        """
        instance = await self.get_by_id(id)
        if not instance:
            return False

        instance.soft_delete()
        await self.db.flush()
        return True
