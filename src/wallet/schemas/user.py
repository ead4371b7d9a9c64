"""Pydantic schemas for user API responses."""

from pydantic import BaseModel, ConfigDict


class UserResponse(BaseModel):
    id: str
    username: str
    name: str
    role: str | None = None
    status: str
    is_admin: bool

    model_config = ConfigDict(from_attributes=True)


class UserListResult(BaseModel):
    users: list[UserResponse]
    total: int
