"""User, role and approval-status endpoints."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.api.deps import (
    CurrentUserId,
    get_db,
    get_gateway,
    get_permission_service,
)
from wallet.core.constants import PermissionType, ResourceType
from wallet.core.exceptions import NotFoundError
from wallet.repositories.user import UserRepository
from wallet.schemas.permission import RoleResponse, RoleUpdateRequest, StatusUpdateRequest
from wallet.schemas.user import UserListResult, UserResponse
from wallet.services.authorization import AuthorizationGateway
from wallet.services.permissions import PermissionService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse, summary="Get the calling user")
async def get_me(
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await UserRepository(db).get_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
    return UserResponse.model_validate(user)


@router.get(
    "",
    response_model=UserListResult,
    summary="List visible users",
    description="""
    Admins see every user. Everyone else sees themselves plus the users
    who shared user data with them.
    """,
)
async def list_users(
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
    gateway: AuthorizationGateway = Depends(get_gateway),
) -> UserListResult:
    owners = await gateway.owner_filter(
        user_id, ResourceType.USERS.value, PermissionType.READ.value
    )
    users = await UserRepository(db).list_by_ids(owners)
    return UserListResult(
        users=[UserResponse.model_validate(user) for user in users],
        total=len(users),
    )


@router.get("/{target_id}/role", response_model=RoleResponse, summary="Get a user's role")
async def get_role(
    target_id: str,
    user_id: CurrentUserId,
    gateway: AuthorizationGateway = Depends(get_gateway),
    permissions: PermissionService = Depends(get_permission_service),
) -> RoleResponse:
    await gateway.require(user_id, target_id, ResourceType.USERS.value, PermissionType.READ.value)
    role = await permissions.get_role(target_id)
    return RoleResponse(user_id=target_id, role=role)


@router.put("/{target_id}/role", response_model=RoleResponse, summary="Change a user's role")
async def set_role(
    target_id: str,
    payload: RoleUpdateRequest,
    user_id: CurrentUserId,
    permissions: PermissionService = Depends(get_permission_service),
) -> RoleResponse:
    """
    Change a user's role.

    Plain users may only reaffirm "user" for themselves, only superadmins
    create superadmins, nobody demotes themselves, and admins cannot touch
    other admins.
    """
    await permissions.set_role(user_id, target_id, payload.role.value)
    return RoleResponse(user_id=target_id, role=payload.role.value)


@router.put(
    "/{target_id}/status",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Approve or reject a user",
)
async def set_status(
    target_id: str,
    payload: StatusUpdateRequest,
    user_id: CurrentUserId,
    permissions: PermissionService = Depends(get_permission_service),
) -> None:
    await permissions.set_status(user_id, target_id, payload.status.value)
