"""Settings API endpoints: user settings and the remote credential."""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from soundvault.api.dependencies import (
    get_app_settings_service,
    get_credentials_service,
    get_db_session,
    get_services,
)
from soundvault.api.schemas.settings import (
    RemoteKeyRequest,
    RemoteKeyStatus,
    SettingsUpdateRequest,
)
from soundvault.application.services.app_settings_service import (
    AppSettingsService,
    LibrarySettings,
)
from soundvault.application.services.credentials_service import (
    REMOTE_API_KEY,
    CredentialsService,
)
from soundvault.application.services.import_service import ensure_library_tree
from soundvault.domain.value_objects.audio_files import expand_library_path
from soundvault.infrastructure.lifecycle import AppServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings")


@router.get("")
async def get_library_settings(
    app_settings: AppSettingsService = Depends(get_app_settings_service),
) -> LibrarySettings:
    return await app_settings.get_library_settings()


# Hey future me - commit BEFORE restarting the watcher: the watcher and the import service
# read the library path through their own sessions, so they'd still see the old value.
@router.patch("")
async def update_library_settings(
    request: SettingsUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    app_settings: AppSettingsService = Depends(get_app_settings_service),
    services: AppServices = Depends(get_services),
) -> LibrarySettings:
    """Apply a partial update. A new library path restarts the watcher on it."""
    changes: dict[str, Any] = request.model_dump(exclude_unset=True)
    before = await app_settings.get_library_settings()
    updated = await app_settings.update_library_settings(changes)
    await session.commit()

    if updated.local_library_path != before.local_library_path:
        root = await asyncio.to_thread(
            ensure_library_tree, expand_library_path(updated.local_library_path)
        )
        logger.info(f"Library path changed to {root}")
        if services.settings.watcher.enabled:
            await services.watcher.restart(root)
    return updated


@router.post("/reset")
async def reset_library_settings(
    session: AsyncSession = Depends(get_db_session),
    app_settings: AppSettingsService = Depends(get_app_settings_service),
    services: AppServices = Depends(get_services),
) -> LibrarySettings:
    """Back to defaults (the stored remote key is kept)."""
    reset = await app_settings.reset_library_settings()
    await session.commit()
    if services.settings.watcher.enabled:
        await services.watcher.restart(await services.import_service.get_library_root())
    return reset


@router.get("/remote-key")
async def get_remote_key_status(
    credentials: CredentialsService = Depends(get_credentials_service),
) -> RemoteKeyStatus:
    return RemoteKeyStatus(configured=await credentials.has_secret(REMOTE_API_KEY))


@router.put("/remote-key")
async def set_remote_key(
    request: RemoteKeyRequest,
    session: AsyncSession = Depends(get_db_session),
    credentials: CredentialsService = Depends(get_credentials_service),
) -> RemoteKeyStatus:
    """Store the remote API key. The value is never returned."""
    await credentials.set_secret(REMOTE_API_KEY, request.api_key.strip())
    await session.commit()
    logger.info("Remote API key updated")
    return RemoteKeyStatus(configured=True)


@router.delete("/remote-key")
async def delete_remote_key(
    session: AsyncSession = Depends(get_db_session),
    credentials: CredentialsService = Depends(get_credentials_service),
) -> RemoteKeyStatus:
    removed = await credentials.delete_secret(REMOTE_API_KEY)
    await session.commit()
    if removed:
        logger.info("Remote API key removed")
    return RemoteKeyStatus(configured=False)
