"""Base repository with generic data-access helpers.

Repositories never commit; the calling service owns the transaction.
"""
from typing import Any, Generic, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from wallet.models.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Generic repository providing lookups and writes for any model."""

    def __init__(self, db: AsyncSession, model: Type[T]):
        self.db = db
        self.model = model

    async def get_by_id(self, id: Any) -> T | None:
        """Get a single record by primary key."""
        return await self.db.get(self.model, id)

    async def add(self, obj: T) -> T:
        """Stage a new record and flush it so generated keys are populated."""
        self.db.add(obj)
        await self.db.flush()
        return obj
