"""YNAB configuration management: masked reads, encrypted writes, env provisioning."""

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet.core.constants import DEFAULT_SYNC_FREQUENCY_MINUTES, MASKED_TOKEN, SecretKind
from wallet.core.exceptions import StoreError, WalletError
from wallet.core.security import SecretCipher
from wallet.models.base import utcnow
from wallet.models.user import User
from wallet.models.ynab import YnabConfig
from wallet.repositories.user import UserRepository
from wallet.repositories.ynab import LegacyYnabSettingsRepository, YnabConfigRepository
from wallet.schemas.ynab import YnabConfigResponse, YnabConfigUpdateRequest
from wallet.services.secrets import SecretStore, environment_key
from wallet.services.ynab_sync import YnabSyncService

logger = logging.getLogger(__name__)

TOKEN_VARIABLE_PREFIX = "YNAB_TOKEN_USER_"


def is_masked(value: str) -> bool:
    """True for the placeholder a client echoes back instead of the real token."""
    head = value[:12]
    return bool(head) and set(head) == {"*"}


class YnabConfigService:
    """Reads and writes a user's YNAB configuration."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        secret_store: SecretStore,
        cipher: SecretCipher,
        sync_service: YnabSyncService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessionmaker = sessionmaker
        self.secret_store = secret_store
        self.cipher = cipher
        self.sync_service = sync_service
        self.clock = clock
        self._background: set[asyncio.Task] = set()

    async def get_config(self, user_id: str) -> YnabConfigResponse | None:
        """Return the caller's configuration with the token masked, or None."""
        async with self.sessionmaker() as session:
            try:
                config = await YnabConfigRepository(session).get_by_user(user_id)
            except SQLAlchemyError as exc:
                raise StoreError(f"Error reading YNAB config: {exc}") from exc

        if config is None:
            return None

        return YnabConfigResponse(
            user_id=config.user_id,
            api_token=MASKED_TOKEN if config.encrypted_api_token else "",
            budget_id=self._reveal(config.encrypted_budget_id),
            account_id=self._reveal(config.encrypted_account_id),
            last_sync_time=config.last_sync_time,
            sync_frequency=config.sync_frequency,
            has_credentials=config.has_credentials,
        )

    def _reveal(self, encrypted: str | None) -> str | None:
        return self.cipher.decrypt(encrypted) if encrypted else None

    async def update_config(self, user_id: str, request: YnabConfigUpdateRequest) -> YnabConfig:
        """
        Upsert the caller's configuration.

        A masked token keeps the stored one. Every provided value is encrypted
        into ``ynab_config`` and mirrored to the legacy row through the secret
        store, which also switches sync on.

        Raises:
            StoreError: If the database write fails
        """
        token = None if is_masked(request.api_token) else request.api_token

        async with self.sessionmaker() as session:
            try:
                repo = YnabConfigRepository(session)
                config = await repo.get_by_user(user_id)
                if config is None:
                    config = await repo.add(
                        YnabConfig(
                            user_id=user_id,
                            sync_frequency=DEFAULT_SYNC_FREQUENCY_MINUTES,
                            has_credentials=False,
                        )
                    )

                if token is not None:
                    config.encrypted_api_token = self.cipher.encrypt(token)
                config.encrypted_budget_id = self.cipher.encrypt(request.budget_id)
                config.encrypted_account_id = self.cipher.encrypt(request.account_id)
                if request.sync_frequency and request.sync_frequency > 0:
                    config.sync_frequency = request.sync_frequency
                config.has_credentials = config.encrypted_api_token is not None
                config.updated_at = self.clock()

                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"Error saving YNAB config: {exc}") from exc

        if token is not None:
            await self.secret_store.put(user_id, SecretKind.YNAB_TOKEN, token)
        await self.secret_store.put(user_id, SecretKind.YNAB_BUDGET_ID, request.budget_id)
        await self.secret_store.put(user_id, SecretKind.YNAB_ACCOUNT_ID, request.account_id)
        await self._enable_legacy_sync(user_id)

        logger.info(f"Updated YNAB configuration for user {user_id}")
        return config

    async def _enable_legacy_sync(self, user_id: str) -> None:
        async with self.sessionmaker() as session:
            try:
                row = await LegacyYnabSettingsRepository(session).get_or_create(user_id)
                row.sync_enabled = True
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"Error enabling YNAB sync: {exc}") from exc

    def trigger_background_sync(self, user_id: str, budget_id: str) -> asyncio.Task | None:
        """Start an on-demand sync without waiting for it; failures are only logged."""
        if self.sync_service is None:
            return None

        async def _run() -> None:
            try:
                await self.sync_service.sync_user_with_budget(user_id, budget_id)
            except WalletError as exc:
                logger.warning(f"Initial YNAB sync for user {user_id} failed: {exc}")
            except Exception:
                logger.exception(f"Initial YNAB sync for user {user_id} failed")

        task = asyncio.create_task(_run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def setup_from_environment(self, environ: Mapping[str, str]) -> list[str]:
        """
        Provision YNAB configuration from ``YNAB_TOKEN_USER_{id}`` variables.

        Users that already have credentials (in either table) are skipped, as
        are users whose budget or account variable is missing. Users that do
        not exist yet are created with placeholder names.

        Returns:
            Ids of the users that were provisioned
        """
        provisioned = []
        for variable in sorted(environ):
            if not variable.startswith(TOKEN_VARIABLE_PREFIX):
                continue
            user_id = variable[len(TOKEN_VARIABLE_PREFIX):]
            if not user_id:
                continue
            try:
                if await self._setup_user_from_environment(user_id, environ):
                    provisioned.append(user_id)
            except WalletError as exc:
                logger.error(f"Error setting up YNAB from environment for user {user_id}: {exc}")
        return provisioned

    async def _setup_user_from_environment(self, user_id: str, environ: Mapping[str, str]) -> bool:
        if await self._has_credentials(user_id):
            logger.debug(f"User {user_id} already has YNAB credentials, skipping env setup")
            return False

        token = environ.get(environment_key(user_id, SecretKind.YNAB_TOKEN), "")
        budget_id = environ.get(environment_key(user_id, SecretKind.YNAB_BUDGET_ID), "")
        account_id = environ.get(environment_key(user_id, SecretKind.YNAB_ACCOUNT_ID), "")
        if not token or not budget_id or not account_id:
            logger.debug(f"Incomplete YNAB environment credentials for user {user_id}")
            return False

        await self._ensure_user(user_id)
        await self.update_config(
            user_id,
            YnabConfigUpdateRequest(api_token=token, budget_id=budget_id, account_id=account_id),
        )
        logger.info(f"Provisioned YNAB configuration for user {user_id} from environment")
        return True

    async def _has_credentials(self, user_id: str) -> bool:
        async with self.sessionmaker() as session:
            try:
                config = await YnabConfigRepository(session).get_by_user(user_id)
                legacy = await LegacyYnabSettingsRepository(session).get_by_id(user_id)
            except SQLAlchemyError as exc:
                raise StoreError(f"Error reading YNAB config: {exc}") from exc

        if config is not None and config.has_credentials:
            return True
        return legacy is not None and bool(legacy.token) and bool(legacy.budget_id)

    async def _ensure_user(self, user_id: str) -> None:
        async with self.sessionmaker() as session:
            try:
                users = UserRepository(session)
                if await users.get_by_id(user_id) is None:
                    await users.add(
                        User(id=user_id, username=f"user_{user_id}", name=f"User {user_id}")
                    )
                    await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"Error creating user {user_id}: {exc}") from exc
