"""Permission grant endpoints."""

from fastapi import APIRouter, Depends, Query, status

from wallet.api.deps import CurrentUserId, get_permission_service
from wallet.core.constants import ResourceType
from wallet.schemas.permission import GrantRequest, PermissionResponse, RevokeRequest
from wallet.services.permissions import PermissionService

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get(
    "",
    response_model=list[PermissionResponse],
    summary="List grants held by a user",
)
async def list_permissions(
    user_id: CurrentUserId,
    grantee_id: str | None = Query(
        None, description="Whose grants to list; only admins may name another user."
    ),
    permissions: PermissionService = Depends(get_permission_service),
) -> list[PermissionResponse]:
    grants = await permissions.list_permissions(user_id, grantee_id)
    return [PermissionResponse.model_validate(grant) for grant in grants]


@router.get(
    "/granted",
    response_model=list[PermissionResponse],
    summary="List who can access an owner's data",
)
async def list_granted_access(
    user_id: CurrentUserId,
    owner_id: str | None = Query(
        None, description="Whose data to inspect; only admins may name another user."
    ),
    resource_type: ResourceType | None = Query(None),
    permissions: PermissionService = Depends(get_permission_service),
) -> list[PermissionResponse]:
    grants = await permissions.list_access_to(
        user_id, owner_id, resource_type.value if resource_type else None
    )
    return [PermissionResponse.model_validate(grant) for grant in grants]


@router.post(
    "",
    response_model=PermissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Grant access",
    description="""
    Grant read or write access on a resource kind.

    The data owner is the caller unless an admin sets **owner_id**.
    Re-granting an existing grant only replaces its expiry.
    """,
)
async def grant_permission(
    payload: GrantRequest,
    user_id: CurrentUserId,
    permissions: PermissionService = Depends(get_permission_service),
) -> PermissionResponse:
    grant = await permissions.grant(
        user_id,
        payload.grantee_id,
        payload.resource_type.value,
        payload.permission_type.value,
        expires_at=payload.expires_at,
        owner_id=payload.owner_id,
    )
    return PermissionResponse.model_validate(grant)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT, summary="Revoke access")
async def revoke_permission(
    payload: RevokeRequest,
    user_id: CurrentUserId,
    permissions: PermissionService = Depends(get_permission_service),
) -> None:
    await permissions.revoke(
        user_id,
        payload.grantee_id,
        payload.owner_id,
        payload.resource_type.value,
        payload.permission_type.value,
    )
