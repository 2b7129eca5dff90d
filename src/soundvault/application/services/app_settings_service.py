"""Runtime settings stored in the app_settings table.

Hey future me - this is the USER-editable settings store (library path, remote URL, auto
sync...). Process settings (DB URL, pool sizes) stay in config.Settings / env vars.

Values are stored as strings with a value_type hint and parsed on the way out. The typed
view the rest of the app uses is LibrarySettings: an explicit model with every known field,
and unknown keys are REJECTED (extra="forbid") instead of silently stored.

Usage:
    settings_service = AppSettingsService(session)
    library = await settings_service.get_library_settings()
    root = await settings_service.get_library_root()
    await settings_service.update_library_settings({"auto_sync": True})
"""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from soundvault.domain.exceptions import ValidationError
from soundvault.domain.value_objects.audio_files import expand_library_path
from soundvault.infrastructure.persistence.repositories import AppSettingsRepository

logger = logging.getLogger(__name__)

DEFAULT_LIBRARY_PATH = "~/SoundVaultLibrary"


class LibrarySettings(BaseModel):
    """User-editable settings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    local_library_path: str = DEFAULT_LIBRARY_PATH
    remote_url: str = ""
    auto_sync: bool = False
    last_sync_at: datetime | None = None
    theme: Literal["light", "dark", "system"] = "system"
    onboarding_complete: bool = False


# field name → (DB key, value_type, category)
_FIELD_KEYS: dict[str, tuple[str, str, str]] = {
    "local_library_path": ("library.local_library_path", "string", "library"),
    "remote_url": ("remote.url", "string", "remote"),
    "auto_sync": ("sync.auto_sync", "boolean", "sync"),
    "last_sync_at": ("sync.last_sync_at", "datetime", "sync"),
    "theme": ("ui.theme", "string", "ui"),
    "onboarding_complete": ("ui.onboarding_complete", "boolean", "ui"),
}


def _serialize(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _parse(raw: str | None, value_type: str) -> Any:
    if raw is None:
        return None
    if value_type == "boolean":
        return raw.lower() in ("true", "1", "yes", "on")
    if value_type == "integer":
        return int(raw)
    if value_type == "datetime":
        parsed = datetime.fromisoformat(raw)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return raw


class AppSettingsService:
    """Typed access to DB-backed settings."""

    def __init__(
        self, session: AsyncSession, default_library_path: str = DEFAULT_LIBRARY_PATH
    ) -> None:
        """Initialize with a session.

        Args:
            session: Database session
            default_library_path: Used until the user picks a library path
        """
        self._repo = AppSettingsRepository(session)
        self._default_library_path = default_library_path

    async def set(
        self,
        key: str,
        value: Any,
        value_type: str = "string",
        category: str = "general",
    ) -> None:
        await self._repo.upsert(key, _serialize(value), value_type, category)

    async def get_library_settings(self) -> LibrarySettings:
        """All user settings, defaults filled in for keys never written."""
        values: dict[str, Any] = {}
        for field_name, (key, value_type, _category) in _FIELD_KEYS.items():
            model = await self._repo.get(key)
            if model is not None and model.value is not None:
                values[field_name] = _parse(model.value, value_type)
        if "local_library_path" not in values:
            values["local_library_path"] = self._default_library_path
        return LibrarySettings.model_validate(values)

    async def update_library_settings(self, changes: dict[str, Any]) -> LibrarySettings:
        """Apply a partial update.

        Raises:
            ValidationError: Unknown key or a value of the wrong type
        """
        current = await self.get_library_settings()
        try:
            updated = LibrarySettings.model_validate({**current.model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid settings: {e}") from e

        for field_name in changes:
            key, value_type, category = _FIELD_KEYS[field_name]
            await self.set(key, getattr(updated, field_name), value_type, category)
        logger.info(f"Updated settings: {', '.join(sorted(changes))}")
        return updated

    async def reset_library_settings(self) -> LibrarySettings:
        """Forget every user setting (secrets are untouched)."""
        for key, _value_type, _category in _FIELD_KEYS.values():
            await self._repo.delete(key)
        return await self.get_library_settings()

    async def get_library_root(self) -> Path:
        """Absolute library root with ``~`` expanded."""
        library = await self.get_library_settings()
        return expand_library_path(library.local_library_path)

    async def record_sync(self, when: datetime | None = None) -> None:
        key, value_type, category = _FIELD_KEYS["last_sync_at"]
        await self.set(key, when or datetime.now(UTC), value_type, category)
