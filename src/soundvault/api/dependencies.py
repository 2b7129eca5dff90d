"""Dependency injection for API endpoints.

Hey future me - every service is built ONCE in the lifespan (infrastructure/lifecycle.py)
and parked on app.state.services. These helpers just pull the right object off it.
Tests that want a different wiring build their own AppServices.
"""

from collections.abc import AsyncGenerator
from typing import cast

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from soundvault.application.services.app_settings_service import AppSettingsService
from soundvault.application.services.credentials_service import CredentialsService
from soundvault.application.services.import_service import ImportService
from soundvault.application.services.library_service import LibraryService
from soundvault.application.services.reconciliation_service import ReconciliationService
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.application.workers.sync_queue_worker import SyncQueueWorker
from soundvault.infrastructure.lifecycle import AppServices
from soundvault.infrastructure.notifications import EventBroadcaster


def get_services(request: Request) -> AppServices:
    """Service container from app state.

    Raises:
        HTTPException: 503 if startup hasn't finished
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return cast(AppServices, services)


# Hey future me - session_scope() commits on success and rolls back on error, so endpoints
# that take a session never call commit() themselves.
async def get_db_session(
    services: AppServices = Depends(get_services),
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped database session."""
    async with services.database.session_scope() as session:
        yield session


def get_app_settings_service(
    session: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
) -> AppSettingsService:
    return AppSettingsService(session, services.settings.storage.default_library_path)


def get_credentials_service(
    session: AsyncSession = Depends(get_db_session),
) -> CredentialsService:
    return CredentialsService(session)


def get_import_service(services: AppServices = Depends(get_services)) -> ImportService:
    return services.import_service


def get_library_service(services: AppServices = Depends(get_services)) -> LibraryService:
    return services.library_service


def get_reconciliation_service(
    services: AppServices = Depends(get_services),
) -> ReconciliationService:
    return services.reconciliation


def get_sync_queue(services: AppServices = Depends(get_services)) -> SyncQueue:
    return services.sync_queue


def get_sync_queue_worker(
    services: AppServices = Depends(get_services),
) -> SyncQueueWorker:
    return services.sync_queue_worker


def get_event_broadcaster(
    services: AppServices = Depends(get_services),
) -> EventBroadcaster:
    return services.notifier
