"""Credentials Service - secrets kept in the app_settings table.

Hey future me - secrets live in the same key/value table as settings, under category
"secret", and NEVER show up in get_library_settings() or any API response. The API only
ever reports whether a secret is set.

Usage:
    credentials = CredentialsService(session)
    remote = await credentials.get_remote_credentials()
    if remote.is_configured():
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from soundvault.application.services.app_settings_service import AppSettingsService
from soundvault.infrastructure.persistence.repositories import AppSettingsRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

REMOTE_API_KEY = "remote-api-key"
SECRET_CATEGORY = "secret"


@dataclass
class RemoteCredentials:
    """Remote object store endpoint and API key."""

    url: str
    api_key: str | None

    def is_configured(self) -> bool:
        """Both URL and key must be present."""
        return bool(self.url and self.url.strip() and self.api_key and self.api_key.strip())

    def __repr__(self) -> str:
        return f"RemoteCredentials(url={self.url!r}, api_key={'***' if self.api_key else None})"


class CredentialsService:
    """Get/set/delete named secrets."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize credentials service.

        Args:
            session: Database session for app_settings queries
        """
        self._repo = AppSettingsRepository(session)
        self._settings_service = AppSettingsService(session)

    async def get_secret(self, name: str) -> str | None:
        model = await self._repo.get(name)
        if model is None or model.category != SECRET_CATEGORY:
            return None
        return model.value or None

    async def set_secret(self, name: str, value: str) -> None:
        await self._repo.upsert(name, value, "string", SECRET_CATEGORY)
        logger.info(f"Secret '{name}' updated")

    async def delete_secret(self, name: str) -> bool:
        """Returns False if the secret didn't exist."""
        deleted = await self._repo.delete(name)
        if deleted:
            logger.info(f"Secret '{name}' deleted")
        return deleted

    async def has_secret(self, name: str) -> bool:
        return await self.get_secret(name) is not None

    async def get_remote_credentials(self) -> RemoteCredentials:
        library = await self._settings_service.get_library_settings()
        return RemoteCredentials(
            url=library.remote_url.rstrip("/"),
            api_key=await self.get_secret(REMOTE_API_KEY),
        )
