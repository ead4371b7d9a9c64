"""YNAB category sync: mirror a user's YNAB taxonomy into local tables.

A sync for one user either lands completely or not at all: the mirror
rewrite, the local category upserts and the last-sync stamp share a single
transaction.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from wallet.config import Settings
from wallet.core.constants import (
    CATEGORY_COLORS,
    INTERNAL_GROUP_PREFIX,
    SYNCED_CATEGORY_DESCRIPTION,
    SecretKind,
)
from wallet.core.exceptions import (
    ConfigError,
    NotFoundError,
    StoreError,
    UpstreamError,
    WalletError,
    YnabUnauthorizedError,
)
from wallet.core.security import SecretCipher
from wallet.models.base import utcnow
from wallet.models.category import Category
from wallet.repositories.category import CategoryRepository
from wallet.repositories.ynab import (
    LegacyYnabSettingsRepository,
    YnabConfigRepository,
    YnabMirrorRepository,
)
from wallet.schemas.ynab import YnabCategoryGroupNode
from wallet.services.secrets import SecretStore
from wallet.services.single_flight import SingleFlight
from wallet.services.ynab_client import YnabClient

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    user_id: str
    groups: int
    categories: int
    local_categories: int
    synced_at: datetime


@dataclass
class SyncSummary:
    attempted: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def is_visible_group(group: YnabCategoryGroupNode) -> bool:
    return not group.hidden and not group.deleted and not group.id.startswith(INTERNAL_GROUP_PREFIX)


def pick_color(now: datetime, offset: int = 0) -> str:
    """Choose a palette color from the clock."""
    return CATEGORY_COLORS[(now.microsecond + offset) % len(CATEGORY_COLORS)]


def _is_transient_upstream(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.transient


def _is_lock_error(exc: BaseException) -> bool:
    return isinstance(exc, StoreError) and exc.is_lock_error


class YnabSyncService:
    """Per-user reconciliation of YNAB category trees into the local store."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        secret_store: SecretStore,
        client: YnabClient,
        cipher: SecretCipher,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.sessionmaker = sessionmaker
        self.secret_store = secret_store
        self.client = client
        self.cipher = cipher
        self.settings = settings
        self.clock = clock
        self.sleep = sleep
        self._gate: SingleFlight[SyncResult] = SingleFlight()

    def _retrying(self, predicate: Callable[[BaseException], bool]) -> AsyncRetrying:
        """Linear backoff: base delay times the attempt number."""
        delay = self.settings.sync_retry_delay_seconds
        return AsyncRetrying(
            stop=stop_after_attempt(self.settings.sync_max_attempts),
            wait=wait_incrementing(start=delay, increment=delay),
            retry=retry_if_exception(predicate),
            sleep=self.sleep,
            reraise=True,
        )

    def is_syncing(self, user_id: str) -> bool:
        return self._gate.in_flight(user_id)

    async def sync_user(self, user_id: str) -> SyncResult:
        """Scheduled-path sync using the stored budget id."""
        return await self._gate.do(
            user_id,
            lambda: self._sync(user_id, None, self.settings.ynab_sync_timeout_seconds),
        )

    async def sync_user_with_budget(self, user_id: str, budget_id: str) -> SyncResult:
        """On-demand sync against an explicit budget.

        Shares the per-user gate with sync_user. A call for the same budget as
        the sync already running receives that sync's result; any other call
        waits for it to finish and then runs.
        """
        return await self._gate.do(
            user_id,
            lambda: self._sync(user_id, budget_id, self.settings.ynab_on_demand_timeout_seconds),
            variant=budget_id,
        )

    async def sync_all(self) -> SyncSummary:
        """Sync every user with sync enabled; failures are logged, never raised."""
        summary = SyncSummary()
        try:
            user_ids = await self.list_sync_user_ids()
        except StoreError:
            logger.exception("Error fetching users for YNAB sync")
            return summary

        logger.info(f"Starting YNAB categories sync for {len(user_ids)} users")
        for user_id in user_ids:
            summary.attempted.append(user_id)
            try:
                await self.sync_user(user_id)
            except WalletError as exc:
                summary.failed.append(user_id)
                logger.error(
                    f"Error syncing YNAB categories for user {user_id}: {exc}",
                    extra={"user_id": user_id, "error_code": exc.error_code},
                )
            except Exception:
                summary.failed.append(user_id)
                logger.exception(f"Unexpected error syncing YNAB categories for user {user_id}")
            else:
                summary.succeeded.append(user_id)

        logger.info(
            f"Completed YNAB categories sync: {len(summary.succeeded)} succeeded, "
            f"{len(summary.failed)} failed"
        )
        return summary

    async def list_sync_user_ids(self) -> list[str]:
        """Users configured in ynab_config, then legacy users not already listed."""
        async with self.sessionmaker() as session:
            try:
                configured = await YnabConfigRepository(session).list_user_ids_with_credentials()
                legacy = await LegacyYnabSettingsRepository(session).list_sync_enabled_user_ids()
            except SQLAlchemyError as exc:
                raise StoreError(f"Error listing YNAB users: {exc}") from exc

        seen = set(configured)
        return configured + [user_id for user_id in legacy if user_id not in seen]

    async def _sync(self, user_id: str, budget_id: str | None, timeout: float) -> SyncResult:
        logger.info(f"Starting YNAB categories sync for user {user_id}")

        token, resolved_budget = await self._resolve_credentials(user_id, budget_id)

        try:
            groups = await self._fetch(token, resolved_budget, timeout)
        except YnabUnauthorizedError:
            logger.warning(f"YNAB rejected the token for user {user_id}; disabling sync")
            await self._mark_credentials_invalid(user_id)
            raise

        async for attempt in self._retrying(_is_lock_error):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Database locked during YNAB sync for user {user_id}, "
                        f"retry {attempt.retry_state.attempt_number}/{self.settings.sync_max_attempts}"
                    )
                result = await self._apply(user_id, groups)

        logger.info(
            f"Successfully synced {result.groups} category groups and {result.categories} "
            f"categories for user {user_id}"
        )
        return result

    async def _fetch(
        self, token: str, budget_id: str, timeout: float
    ) -> list[YnabCategoryGroupNode]:
        async for attempt in self._retrying(_is_transient_upstream):
            with attempt:
                return await self.client.fetch_category_groups(token, budget_id, timeout=timeout)
        raise AssertionError("unreachable")

    async def _resolve_credentials(
        self, user_id: str, budget_id: str | None
    ) -> tuple[str, str]:
        """
        Find the token and budget for a user.

        An ynab_config row with credentials wins; otherwise the secret store
        (environment or legacy row) is consulted.

        Raises:
            ConfigError: If no token or no budget id can be resolved
        """
        async with self.sessionmaker() as session:
            try:
                config = await YnabConfigRepository(session).get_by_user(user_id)
            except SQLAlchemyError as exc:
                raise StoreError(f"Error reading YNAB config: {exc}") from exc

        token = None
        if config is not None and config.has_credentials and config.encrypted_api_token:
            token = self.cipher.decrypt(config.encrypted_api_token)
            if budget_id is None and config.encrypted_budget_id:
                budget_id = self.cipher.decrypt(config.encrypted_budget_id)

        if token is None:
            token = await self._from_secret_store(user_id, SecretKind.YNAB_TOKEN)
        if budget_id is None:
            budget_id = await self._from_secret_store(user_id, SecretKind.YNAB_BUDGET_ID)

        if not token:
            raise ConfigError(f"No YNAB token for user {user_id}", details={"user_id": user_id})
        if not budget_id:
            raise ConfigError(f"No YNAB budget for user {user_id}", details={"user_id": user_id})
        return token, budget_id

    async def _from_secret_store(self, user_id: str, kind: SecretKind) -> str | None:
        try:
            return await self.secret_store.get(user_id, kind)
        except NotFoundError:
            return None

    async def _mark_credentials_invalid(self, user_id: str) -> None:
        async with self.sessionmaker() as session:
            try:
                await YnabConfigRepository(session).mark_credentials_invalid(user_id)
                await LegacyYnabSettingsRepository(session).disable_sync(user_id)
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.exception(f"Failed to mark YNAB credentials invalid for user {user_id}")

    async def _apply(self, user_id: str, groups: list[YnabCategoryGroupNode]) -> SyncResult:
        """Rewrite the user's mirror and upsert local categories in one transaction."""
        now = self.clock()
        session = self.sessionmaker()
        try:
            async with session.begin():
                mirror = YnabMirrorRepository(session)
                await mirror.clear(user_id)

                visible = [group for group in groups if is_visible_group(group)]
                for group in visible:
                    await mirror.upsert_group(user_id, group.id, group.name, now)
                # Categories reference (group_id, user_id)
                await session.flush()

                category_names: list[str] = []
                for group in visible:
                    for category in group.categories:
                        if category.hidden or category.deleted:
                            continue
                        await mirror.upsert_category(
                            user_id, category.id, group.id, category.name, now
                        )
                        category_names.append(category.name)

                local_count = await self._upsert_local_categories(
                    session, user_id, category_names, now
                )

                await YnabConfigRepository(session).touch_last_sync(user_id, now)
                await LegacyYnabSettingsRepository(session).touch_last_sync(user_id, now)
        except SQLAlchemyError as exc:
            logger.error(f"YNAB sync transaction for user {user_id} rolled back: {exc}")
            raise StoreError(f"Error syncing categories: {exc}") from exc
        finally:
            await session.close()

        return SyncResult(
            user_id=user_id,
            groups=len(visible),
            categories=len(category_names),
            local_categories=local_count,
            synced_at=now,
        )

    async def _upsert_local_categories(
        self, session: AsyncSession, user_id: str, names: list[str], now: datetime
    ) -> int:
        """Upsert local categories by (name, user_id), keeping colors already chosen."""
        repo = CategoryRepository(session)
        seen: set[str] = set()
        for offset, name in enumerate(names):
            if name in seen:
                continue
            seen.add(name)

            existing = await repo.get_by_name(user_id, name)
            if existing is None:
                await repo.add(
                    Category(
                        name=name,
                        description=SYNCED_CATEGORY_DESCRIPTION,
                        user_id=user_id,
                        color=pick_color(now, offset),
                        last_updated=now,
                    )
                )
                continue

            existing.description = SYNCED_CATEGORY_DESCRIPTION
            existing.last_updated = now
            if not existing.color:
                existing.color = pick_color(now, offset)

        await session.flush()
        return len(seen)
