import logging
import os
from collections.abc import Mapping
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError

from wallet.api.middleware.error_handler import (
    handle_generic_error,
    handle_integrity_error,
    handle_validation_error,
    handle_wallet_error,
)
from wallet.api.middleware.logging import RequestLoggingMiddleware
from wallet.api.v1 import router as v1_router
from wallet.api.v1.health import router as health_router
from wallet.config import Settings, get_settings
from wallet.core.exceptions import WalletError
from wallet.core.logging import setup_logging
from wallet.core.security import SecretCipher
from wallet.db.session import Database
from wallet.services.scheduler import DailySyncScheduler
from wallet.services.secrets import build_secret_store
from wallet.services.ynab_client import YnabClient
from wallet.services.ynab_config import YnabConfigService
from wallet.services.ynab_sync import YnabSyncService

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    environ: Mapping[str, str] | None = None,
    ynab_client: YnabClient | None = None,
) -> FastAPI:
    """
    Build the application.

    Everything stateful (engine, secret store, YNAB client, scheduler) is
    created in the lifespan and kept on ``app.state``; the optional
    arguments replace those pieces in tests.
    """
    settings = settings or get_settings()
    environ = environ if environ is not None else os.environ
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        db = database or Database.from_settings(settings)
        if settings.reset_db and not settings.is_production:
            logger.warning("RESET_DB set; dropping and recreating all tables")
            await db.drop_all()
        await db.create_all()

        secret_store = build_secret_store(settings, db.sessionmaker, environ)
        cipher = SecretCipher(settings.encryption_key)
        client = ynab_client or YnabClient(settings.ynab_base_url)
        sync_service = YnabSyncService(db.sessionmaker, secret_store, client, cipher, settings)
        config_service = YnabConfigService(
            db.sessionmaker, secret_store, cipher, sync_service=sync_service
        )

        app.state.db = db
        app.state.sync_service = sync_service
        app.state.config_service = config_service

        provisioned = await config_service.setup_from_environment(environ)
        if provisioned:
            logger.info(f"Provisioned YNAB configuration for {len(provisioned)} users from env")

        scheduler = None
        if settings.scheduler_enabled:
            scheduler = DailySyncScheduler(
                sync_service.sync_all,
                jitter_seconds=settings.scheduler_jitter_seconds,
                timezone=settings.scheduler_timezone,
            )
            scheduler.start()
        app.state.scheduler = scheduler

        yield

        # Shutdown
        if scheduler is not None:
            await scheduler.stop()
        await client.aclose()
        await db.dispose()

    app = FastAPI(
        title="Shared Wallet API",
        description="Shared-wallet authorization and YNAB category sync",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Add request logging middleware
    app.add_middleware(RequestLoggingMiddleware)

    # Register exception handlers (order matters - most specific first)
    app.add_exception_handler(WalletError, handle_wallet_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(IntegrityError, handle_integrity_error)
    app.add_exception_handler(Exception, handle_generic_error)

    # Register routers
    app.include_router(health_router)
    app.include_router(v1_router)

    return app


app = create_app()
