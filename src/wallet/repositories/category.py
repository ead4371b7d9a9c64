"""Category repository with owner-scoped queries."""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.models.category import Category
from wallet.repositories.base import BaseRepository


class CategoryRepository(BaseRepository[Category]):
    """Repository for local categories."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Category)

    async def get_by_name(self, user_id: str, name: str) -> Category | None:
        result = await self.db.execute(
            select(Category).where(Category.user_id == user_id, Category.name == name)
        )
        return result.scalar_one_or_none()

    async def get_all_by_owners(
        self, owner_ids: set[str], skip: int = 0, limit: int = 500
    ) -> list[Category]:
        """Get categories for any of the given owners, used for shared list views."""
        if not owner_ids:
            return []
        result = await self.db.execute(
            select(Category)
            .where(Category.user_id.in_(owner_ids))
            .order_by(Category.user_id, Category.name)
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())
