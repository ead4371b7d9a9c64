"""Pydantic schemas for category API responses."""

from pydantic import BaseModel, ConfigDict, Field


class CategoryResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    user_id: str = Field(description="Owner of the category")
    color: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CategoryListResult(BaseModel):
    categories: list[CategoryResponse]
    total: int
