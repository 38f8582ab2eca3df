"""FastAPI application factory.

Creates the app with request logging, lifespan wiring of the CRM sync
repositories and client factory, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from src.crm_sync.api.middleware import LoggingMiddleware
from src.crm_sync.api.v1.router import router as v1_router
from src.crm_sync.config import get_settings
from src.crm_sync.core.database import close_db, get_session
from src.crm_sync.core.encryption import get_cipher
from src.crm_sync.core.logging import configure_structlog
from src.crm_sync.crm.credentials import CredentialManager
from src.crm_sync.crm.oauth import OAuthClient
from src.crm_sync.crm.repository import CRMRepositories
from src.crm_sync.crm.sync import CredentialClientFactory


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Wire sync dependencies onto app.state on startup, close the DB on shutdown."""
    configure_structlog()
    log = structlog.get_logger(__name__)
    settings = get_settings()

    repositories = CRMRepositories.from_session_factory(get_session)
    app.state.crm_repositories = repositories

    # Without an encryption key credentials cannot be read; endpoints return 503
    try:
        credentials = CredentialManager(
            repositories.integrations,
            get_cipher(),
            OAuthClient(settings),
            settings,
        )
        app.state.crm_client_factory = CredentialClientFactory(credentials, settings)
        log.info("crm_sync.initialized", environment=settings.ENVIRONMENT.value)
    except ValueError:
        log.warning("crm_sync.init_failed", exc_info=True)
        app.state.crm_client_factory = None

    yield

    await close_db()
    log.info("crm_sync.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="CRM Sync API",
        version="0.1.0",
        description="One-way sync of leads and outreach activity into HubSpot, Salesforce and Pipedrive",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)
    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
