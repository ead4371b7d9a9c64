"""Pydantic schemas for the YNAB wire format and the YNAB config API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class YnabCategoryNode(BaseModel):
    """A category as returned by ``GET /budgets/{id}/categories``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    hidden: bool = False
    deleted: bool = False


class YnabCategoryGroupNode(BaseModel):
    """A category group with its child categories."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    hidden: bool = False
    deleted: bool = False
    categories: list[YnabCategoryNode] = Field(default_factory=list)


class YnabCategoryGroupsData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category_groups: list[YnabCategoryGroupNode]


class YnabCategoriesResponse(BaseModel):
    """Top-level envelope: ``{"data": {"category_groups": [...]}}``."""

    model_config = ConfigDict(extra="ignore")

    data: YnabCategoryGroupsData


class YnabConfigResponse(BaseModel):
    """YNAB configuration as shown to its owner; the token is never echoed."""

    user_id: str
    api_token: str = Field("", description="Masked placeholder when a token is stored")
    budget_id: str | None = None
    account_id: str | None = None
    last_sync_time: datetime | None = None
    sync_frequency: int
    has_credentials: bool


class YnabConfigUpdateRequest(BaseModel):
    api_token: str = Field(min_length=1)
    budget_id: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    sync_frequency: int | None = Field(None, description="Minutes between syncs")


class SyncStatusResponse(BaseModel):
    status: str
    message: str
