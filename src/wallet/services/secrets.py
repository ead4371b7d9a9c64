"""Per-user secret storage with an environment-backed and a database-backed variant.

The variant is chosen once at startup by :func:`build_secret_store`; nothing
else in the code path looks at the deployment platform.
"""

import logging
import os
from collections.abc import Mapping
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet.config import Settings
from wallet.core.constants import ENCRYPTED_PREFIX, ENVIRONMENT_MARKER, SecretKind
from wallet.core.exceptions import NotFoundError, StoreError
from wallet.models.ynab import UserYnabSettings
from wallet.repositories.ynab import LegacyYnabSettingsRepository

logger = logging.getLogger(__name__)

# Legacy row column holding each kind of secret
_COLUMNS: dict[SecretKind, str] = {
    SecretKind.YNAB_TOKEN: "token",
    SecretKind.YNAB_BUDGET_ID: "budget_id",
    SecretKind.YNAB_ACCOUNT_ID: "account_id",
}


def environment_key(user_id: str, kind: SecretKind) -> str:
    """Name of the environment variable holding a user's secret, e.g. YNAB_TOKEN_USER_42."""
    return f"{kind.value.upper()}_USER_{user_id}"


def strip_marker(value: str | None) -> str | None:
    """Decode a stored value: drop the "enc:" prefix, treat placeholders as absent."""
    if not value or value == ENVIRONMENT_MARKER:
        return None
    if value.startswith(ENCRYPTED_PREFIX):
        return value[len(ENCRYPTED_PREFIX):] or None
    return value


class SecretStore(Protocol):
    async def put(self, user_id: str, kind: SecretKind, value: str) -> None: ...

    async def get(self, user_id: str, kind: SecretKind) -> str: ...


async def _write_legacy_column(
    sessionmaker: async_sessionmaker[AsyncSession], user_id: str, kind: SecretKind, stored: str
) -> None:
    async with sessionmaker() as session:
        try:
            repo = LegacyYnabSettingsRepository(session)
            row = await repo.get_or_create(user_id)
            setattr(row, _COLUMNS[kind], stored)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise StoreError(f"Error storing {kind.value} in database: {exc}") from exc


class DatabaseSecretStore:
    """Keeps secrets in ``user_ynab_settings`` behind the "enc:" marker."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self.sessionmaker = sessionmaker

    async def put(self, user_id: str, kind: SecretKind, value: str) -> None:
        await _write_legacy_column(self.sessionmaker, user_id, kind, f"{ENCRYPTED_PREFIX}{value}")

    async def get(self, user_id: str, kind: SecretKind) -> str:
        async with self.sessionmaker() as session:
            try:
                row: UserYnabSettings | None = await LegacyYnabSettingsRepository(
                    session
                ).get_by_id(user_id)
            except SQLAlchemyError as exc:
                raise StoreError(f"Error retrieving {kind.value} from database: {exc}") from exc

        value = strip_marker(getattr(row, _COLUMNS[kind])) if row is not None else None
        if value is None:
            raise NotFoundError(
                f"Secret '{kind.value}' for user {user_id} not found",
                details={"user_id": user_id, "kind": kind.value},
            )
        return value


class EnvironmentSecretStore:
    """Reads secrets provisioned out-of-band as process environment entries."""

    def __init__(
        self,
        environ: Mapping[str, str],
        sessionmaker: async_sessionmaker[AsyncSession],
    ):
        self.environ = environ
        self.sessionmaker = sessionmaker

    async def put(self, user_id: str, kind: SecretKind, value: str) -> None:
        # The platform owns the value; record only where it lives.
        key = environment_key(user_id, kind)
        logger.info("Running with environment secrets; store this value with the platform CLI")
        logger.info(f"To store this secret, run: fly secrets set {key}=<value>")
        await _write_legacy_column(self.sessionmaker, user_id, kind, ENVIRONMENT_MARKER)

    async def get(self, user_id: str, kind: SecretKind) -> str:
        value = self.environ.get(environment_key(user_id, kind), "")
        if not value:
            raise NotFoundError(
                f"Secret '{kind.value}' for user {user_id} not found in environment",
                details={"user_id": user_id, "kind": kind.value},
            )
        return value


def build_secret_store(
    settings: Settings,
    sessionmaker: async_sessionmaker[AsyncSession],
    environ: Mapping[str, str] | None = None,
) -> SecretStore:
    """Pick the secret store for this deployment."""
    if settings.use_environment_secrets:
        logger.info("Using environment-backed secret store")
        return EnvironmentSecretStore(environ if environ is not None else os.environ, sessionmaker)

    logger.info("Using database-backed secret store")
    return DatabaseSecretStore(sessionmaker)
