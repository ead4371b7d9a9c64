"""User repository for identity, role and status queries."""
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.core.constants import ADMIN_ROLES
from wallet.models.user import User
from wallet.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User model."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, User)

    async def get_role(self, user_id: str) -> tuple[bool, str | None]:
        """Return (exists, raw role column) without loading the whole row."""
        result = await self.db.execute(select(User.role).where(User.id == user_id))
        row = result.first()
        if row is None:
            return False, None
        return True, row[0]

    async def get_status(self, user_id: str) -> str | None:
        result = await self.db.execute(select(User.status).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def list_ids(self) -> list[str]:
        result = await self.db.execute(select(User.id).order_by(User.id))
        return list(result.scalars().all())

    async def list_by_ids(self, user_ids: set[str]) -> list[User]:
        if not user_ids:
            return []
        result = await self.db.execute(
            select(User).where(User.id.in_(user_ids)).order_by(User.username)
        )
        return list(result.scalars().all())

    async def set_role(self, user_id: str, role: str) -> None:
        """Write role and the is_admin mirror in one statement."""
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(role=role, is_admin=role in ADMIN_ROLES)
        )

    async def set_status(self, user_id: str, status: str) -> None:
        await self.db.execute(update(User).where(User.id == user_id).values(status=status))
