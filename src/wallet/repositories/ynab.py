"""YNAB repositories: credentials (new and legacy) and the category mirror."""
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.models.ynab import UserYnabSettings, YnabCategory, YnabCategoryGroup, YnabConfig
from wallet.repositories.base import BaseRepository


class YnabConfigRepository(BaseRepository[YnabConfig]):
    """Repository for the encrypted ``ynab_config`` rows."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, YnabConfig)

    async def get_by_user(self, user_id: str) -> YnabConfig | None:
        result = await self.db.execute(select(YnabConfig).where(YnabConfig.user_id == user_id))
        return result.scalar_one_or_none()

    async def list_user_ids_with_credentials(self) -> list[str]:
        result = await self.db.execute(
            select(YnabConfig.user_id)
            .where(YnabConfig.has_credentials.is_(True))
            .order_by(YnabConfig.user_id)
        )
        return list(result.scalars().all())

    async def mark_credentials_invalid(self, user_id: str) -> None:
        await self.db.execute(
            update(YnabConfig).where(YnabConfig.user_id == user_id).values(has_credentials=False)
        )

    async def touch_last_sync(self, user_id: str, when: datetime) -> None:
        await self.db.execute(
            update(YnabConfig)
            .where(YnabConfig.user_id == user_id)
            .values(last_sync_time=when, updated_at=when)
        )


class LegacyYnabSettingsRepository(BaseRepository[UserYnabSettings]):
    """Repository for the flat ``user_ynab_settings`` table."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, UserYnabSettings)

    async def get_or_create(self, user_id: str) -> UserYnabSettings:
        row = await self.get_by_id(user_id)
        if row is None:
            row = await self.add(UserYnabSettings(user_id=user_id, sync_enabled=False))
        return row

    async def list_sync_enabled_user_ids(self) -> list[str]:
        result = await self.db.execute(
            select(UserYnabSettings.user_id)
            .where(UserYnabSettings.sync_enabled.is_(True))
            .order_by(UserYnabSettings.user_id)
        )
        return list(result.scalars().all())

    async def disable_sync(self, user_id: str) -> None:
        await self.db.execute(
            update(UserYnabSettings)
            .where(UserYnabSettings.user_id == user_id)
            .values(sync_enabled=False)
        )

    async def touch_last_sync(self, user_id: str, when: datetime) -> None:
        await self.db.execute(
            update(UserYnabSettings)
            .where(UserYnabSettings.user_id == user_id)
            .values(last_synced=when)
        )


class YnabMirrorRepository:
    """Per-user mirror of YNAB category groups and categories."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def clear(self, user_id: str) -> None:
        """Drop the user's mirror, children first."""
        await self.db.execute(delete(YnabCategory).where(YnabCategory.user_id == user_id))
        await self.db.execute(
            delete(YnabCategoryGroup).where(YnabCategoryGroup.user_id == user_id)
        )

    async def upsert_group(self, user_id: str, group_id: str, name: str, when: datetime) -> None:
        await self.db.merge(
            YnabCategoryGroup(id=group_id, user_id=user_id, name=name, last_updated=when)
        )

    async def upsert_category(
        self, user_id: str, category_id: str, group_id: str, name: str, when: datetime
    ) -> None:
        await self.db.merge(
            YnabCategory(
                id=category_id,
                user_id=user_id,
                group_id=group_id,
                name=name,
                last_updated=when,
            )
        )
