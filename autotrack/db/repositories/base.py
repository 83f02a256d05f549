"""
Base repository with common CRUD operations.

Repositories are bound to the caller's session so a service can group
several reads and writes into one transaction.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from autotrack.infrastructure.database import Base
from autotrack.infrastructure.exceptions import NotFound

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Generic async repository for SQLAlchemy models."""

    model: Type[T]
    entity: str = "record"

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, id: Any, *, for_update: bool = False) -> Optional[T]:
        """Get a single record by primary key, optionally row-locked."""
        if not for_update:
            return await self.session.get(self.model, id)
        stmt = select(self.model).where(self.model.id == id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_or_raise(self, id: Any, *, for_update: bool = False) -> T:
        """Get a record by primary key or raise NotFound."""
        instance = await self.get_by_id(id, for_update=for_update)
        if instance is None:
            raise NotFound(self.entity, id)
        return instance

    async def list(
        self,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Sequence[T]:
        """List records with optional filters, ordering, and pagination."""
        stmt = select(self.model)

        if filters:
            for key, value in filters.items():
                if value is not None and hasattr(self.model, key):
                    stmt = stmt.where(getattr(self.model, key) == value)

        if order_by and hasattr(self.model, order_by.lstrip("-")):
            col_name = order_by.lstrip("-")
            col = getattr(self.model, col_name)
            stmt = stmt.order_by(col.desc() if order_by.startswith("-") else col)

        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count(self, filters: dict[str, Any] | None = None) -> int:
        """Count records matching filters."""
        stmt = select(func.count()).select_from(self.model)
        if filters:
            for key, value in filters.items():
                if value is not None and hasattr(self.model, key):
                    stmt = stmt.where(getattr(self.model, key) == value)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def add(self, instance: T) -> T:
        """Add a new record and flush it so constraint violations surface here."""
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def delete(self, instance: T) -> None:
        """Delete a record."""
        await self.session.delete(instance)
        await self.session.flush()
