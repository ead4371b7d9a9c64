"""Permission repository: grant rows and the queries the permission engine runs."""
from datetime import datetime

from sqlalchemy import delete, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.core.constants import PermissionType, ResourceType
from wallet.models.base import as_utc
from wallet.models.permission import Permission
from wallet.repositories.base import BaseRepository


def _satisfying(resource_type: str, permission_type: str, now: datetime):
    """Filters shared by check and owner listing.

    Write implies read and "all" implies anything via set membership.
    """
    return (
        Permission.resource_type.in_({resource_type, ResourceType.ALL.value}),
        Permission.permission_type.in_(
            {permission_type, PermissionType.WRITE.value, PermissionType.ALL.value}
        ),
        or_(Permission.expires_at.is_(None), Permission.expires_at > as_utc(now)),
    )


class PermissionRepository(BaseRepository[Permission]):
    """Repository for Permission grants."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Permission)

    async def find(
        self, grantee_id: str, owner_id: str, resource_type: str, permission_type: str
    ) -> Permission | None:
        result = await self.db.execute(
            select(Permission).where(
                Permission.granted_user_id == grantee_id,
                Permission.owner_user_id == owner_id,
                Permission.resource_type == resource_type,
                Permission.permission_type == permission_type,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        grantee_id: str,
        owner_id: str,
        resource_type: str,
        permission_type: str,
        expires_at: datetime | None,
        now: datetime,
    ) -> Permission:
        """Insert the grant, or replace expires_at on the existing 4-tuple."""
        if expires_at is not None:
            expires_at = as_utc(expires_at)
        grant = await self.find(grantee_id, owner_id, resource_type, permission_type)
        if grant is not None:
            grant.expires_at = expires_at
            await self.db.flush()
            return grant

        return await self.add(
            Permission(
                granted_user_id=grantee_id,
                owner_user_id=owner_id,
                resource_type=resource_type,
                permission_type=permission_type,
                created_at=now,
                expires_at=expires_at,
            )
        )

    async def remove(
        self, grantee_id: str, owner_id: str, resource_type: str, permission_type: str
    ) -> int:
        result = await self.db.execute(
            delete(Permission).where(
                Permission.granted_user_id == grantee_id,
                Permission.owner_user_id == owner_id,
                Permission.resource_type == resource_type,
                Permission.permission_type == permission_type,
            )
        )
        return result.rowcount or 0

    async def has_active_grant(
        self,
        grantee_id: str,
        owner_id: str,
        resource_type: str,
        permission_type: str,
        now: datetime,
    ) -> bool:
        stmt = select(
            exists().where(
                Permission.granted_user_id == grantee_id,
                Permission.owner_user_id == owner_id,
                *_satisfying(resource_type, permission_type, now),
            )
        )
        result = await self.db.execute(stmt)
        return bool(result.scalar())

    async def owners_granting(
        self, grantee_id: str, resource_type: str, permission_type: str, now: datetime
    ) -> set[str]:
        result = await self.db.execute(
            select(Permission.owner_user_id)
            .where(
                Permission.granted_user_id == grantee_id,
                *_satisfying(resource_type, permission_type, now),
            )
            .distinct()
        )
        return set(result.scalars().all())

    async def list_for_grantee(self, grantee_id: str) -> list[Permission]:
        result = await self.db.execute(
            select(Permission)
            .where(Permission.granted_user_id == grantee_id)
            .order_by(Permission.id)
        )
        return list(result.scalars().all())

    async def list_for_owner(
        self, owner_id: str, now: datetime, resource_type: str | None = None
    ) -> list[Permission]:
        """Unexpired grants on the owner's data, optionally for one resource kind."""
        stmt = select(Permission).where(
            Permission.owner_user_id == owner_id,
            or_(Permission.expires_at.is_(None), Permission.expires_at > as_utc(now)),
        )
        if resource_type is not None:
            stmt = stmt.where(
                Permission.resource_type.in_({resource_type, ResourceType.ALL.value})
            )
        result = await self.db.execute(stmt.order_by(Permission.id))
        return list(result.scalars().all())
