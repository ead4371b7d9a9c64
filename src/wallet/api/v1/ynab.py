"""YNAB configuration and on-demand sync endpoints."""

from fastapi import APIRouter, Body, Depends, Response, status

from wallet.api.deps import CurrentUserId, get_config_service, get_sync_service
from wallet.schemas.ynab import SyncStatusResponse, YnabConfigResponse, YnabConfigUpdateRequest
from wallet.services.ynab_config import YnabConfigService
from wallet.services.ynab_sync import YnabSyncService

router = APIRouter(prefix="/ynab", tags=["ynab"])


@router.get(
    "/config",
    response_model=YnabConfigResponse,
    responses={204: {"description": "No YNAB configuration stored"}},
    summary="Get the caller's YNAB configuration",
)
async def get_config(
    user_id: CurrentUserId,
    service: YnabConfigService = Depends(get_config_service),
):
    """The API token is never returned, only a fixed mask when one is stored."""
    config = await service.get_config(user_id)
    if config is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return config


@router.put(
    "/config",
    response_model=SyncStatusResponse,
    summary="Store the caller's YNAB configuration",
    description="""
    Encrypts and stores the token, budget and account ids, enables the daily
    sync and starts an initial sync in the background. Sending the masked
    token back keeps the stored one.
    """,
)
async def update_config(
    payload: YnabConfigUpdateRequest,
    user_id: CurrentUserId,
    service: YnabConfigService = Depends(get_config_service),
) -> SyncStatusResponse:
    await service.update_config(user_id, payload)
    service.trigger_background_sync(user_id, payload.budget_id)
    return SyncStatusResponse(status="ok", message="Configuration updated")


@router.post(
    "/sync",
    response_model=SyncStatusResponse,
    summary="Sync YNAB categories now",
)
async def sync_now(
    user_id: CurrentUserId,
    budget_id: str | None = Body(None, embed=True),
    sync_service: YnabSyncService = Depends(get_sync_service),
) -> SyncStatusResponse:
    if budget_id:
        result = await sync_service.sync_user_with_budget(user_id, budget_id)
    else:
        result = await sync_service.sync_user(user_id)
    return SyncStatusResponse(
        status="ok",
        message=(
            f"Synced {result.groups} category groups and {result.categories} categories"
        ),
    )
