"""Category listing endpoints, scoped by the permission engine."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.api.deps import CurrentUserId, get_db, get_gateway
from wallet.core.constants import PermissionType, ResourceType
from wallet.repositories.category import CategoryRepository
from wallet.schemas.category import CategoryListResult, CategoryResponse
from wallet.services.authorization import AuthorizationGateway

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get(
    "",
    response_model=CategoryListResult,
    summary="List categories the caller can read",
    description="""
    Without **owner_id**, returns categories of every owner the caller can
    read: their own, those shared with them, or all of them for admins.
    """,
)
async def list_categories(
    user_id: CurrentUserId,
    owner_id: str | None = Query(None, description="Restrict to a single owner"),
    skip: int = Query(0, ge=0),
    limit: int = Query(500, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    gateway: AuthorizationGateway = Depends(get_gateway),
) -> CategoryListResult:
    owners = await gateway.owner_filter(
        user_id, ResourceType.CATEGORIES.value, PermissionType.READ.value, owner_id
    )
    categories = await CategoryRepository(db).get_all_by_owners(owners, skip=skip, limit=limit)
    return CategoryListResult(
        categories=[CategoryResponse.model_validate(c) for c in categories],
        total=len(categories),
    )


@router.get(
    "/{owner_id}",
    response_model=CategoryListResult,
    summary="List one owner's categories",
)
async def list_owner_categories(
    owner_id: str,
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
    gateway: AuthorizationGateway = Depends(get_gateway),
) -> CategoryListResult:
    await gateway.require(
        user_id, owner_id, ResourceType.CATEGORIES.value, PermissionType.READ.value
    )
    categories = await CategoryRepository(db).get_all_by_owners({owner_id})
    return CategoryListResult(
        categories=[CategoryResponse.model_validate(c) for c in categories],
        total=len(categories),
    )
