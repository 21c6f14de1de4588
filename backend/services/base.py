"""Base service with generic reads and writes.

Every store service inherits from this. Services never commit: the caller
owns the transaction (a FastAPI request or one engine transition).
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError
from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Generic data access for any SQLAlchemy model.

    Usage:
        class DefinitionService(BaseService[WorkflowDefinition]):
            def __init__(self, db: AsyncSession):
                super().__init__(WorkflowDefinition, db)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        """Get a single record by ID."""
        result = await self.db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_or_404(self, id: str) -> ModelType:
        """Get a record by ID or raise ``NotFoundError``."""
        instance = await self.get_by_id(id)
        if instance is None:
            raise NotFoundError(f"{self.model.__name__} {id} not found")
        return instance

    async def list(
        self,
        filters: dict[str, Any] = None,
        order_by: str = "created_at",
        order_desc: bool = True,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Sequence[ModelType]:
        """List records with equality / membership filters.

        None filter values are ignored, list values become ``IN`` clauses.
        """
        query = select(self.model)
        for field, value in (filters or {}).items():
            if value is None or not hasattr(self.model, field):
                continue
            col = getattr(self.model, field)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.where(col.in_(list(value)))
            else:
                query = query.where(col == value)

        if hasattr(self.model, order_by):
            col = getattr(self.model, order_by)
            query = query.order_by(col.desc() if order_desc else col.asc())

        query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return result.scalars().all()

    async def count(self, **filters: Any) -> int:
        query = select(func.count()).select_from(self.model)
        for field, value in filters.items():
            query = query.where(getattr(self.model, field) == value)
        result = await self.db.execute(query)
        return result.scalar() or 0

    # ─── Write ─────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Create a new record.

        Args:
            data: Dict of field values

        Returns:
            Created model instance
        """
        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    async def delete(self, instance: ModelType) -> None:
        """Permanently delete a record."""
        await self.db.delete(instance)
        await self.db.flush()
