"""FastAPI dependency injection for identity, database and services."""

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.config import Settings
from wallet.core.exceptions import AuthenticationError
from wallet.core.security import get_user_id_from_token
from wallet.db.session import get_db
from wallet.services.authorization import AuthorizationGateway
from wallet.services.permissions import PermissionService
from wallet.services.ynab_config import YnabConfigService
from wallet.services.ynab_sync import YnabSyncService

# Bearer tokens issued by the identity provider
security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_current_user_id(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Extract the verified caller id from the bearer token.

    Raises:
        AuthenticationError: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")

    user_id = get_user_id_from_token(credentials.credentials, settings)
    request.state.user_id = user_id
    return user_id


async def get_permission_service(
    db: AsyncSession = Depends(get_db),
) -> PermissionService:
    return PermissionService(db)


async def get_gateway(
    permissions: PermissionService = Depends(get_permission_service),
) -> AuthorizationGateway:
    return AuthorizationGateway(permissions)


def get_sync_service(request: Request) -> YnabSyncService:
    return request.app.state.sync_service


def get_config_service(request: Request) -> YnabConfigService:
    return request.app.state.config_service


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
