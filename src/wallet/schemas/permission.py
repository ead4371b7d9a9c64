"""Pydantic schemas for permission grants and roles."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from wallet.core.constants import PermissionType, ResourceType, Role, UserStatus


class PermissionResponse(BaseModel):
    id: int
    granted_user_id: str
    owner_user_id: str
    resource_type: str
    permission_type: str
    created_at: datetime
    expires_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class GrantRequest(BaseModel):
    grantee_id: str = Field(min_length=1)
    resource_type: ResourceType
    permission_type: PermissionType
    expires_at: datetime | None = None
    owner_id: str | None = Field(None, description="Defaults to the caller; admins may set it")


class RevokeRequest(BaseModel):
    grantee_id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    resource_type: ResourceType
    permission_type: PermissionType


class RoleResponse(BaseModel):
    user_id: str
    role: str


class RoleUpdateRequest(BaseModel):
    role: Role


class StatusUpdateRequest(BaseModel):
    status: UserStatus
