"""API version 1 routes."""

from fastapi import APIRouter

from wallet.api.v1 import categories, permissions, users, ynab

router = APIRouter(prefix="/api/v1")

# Include routers
router.include_router(users.router)
router.include_router(permissions.router)
router.include_router(categories.router)
router.include_router(ynab.router)
