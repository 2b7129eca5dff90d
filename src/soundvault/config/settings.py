"""Application settings loaded from environment variables.

Hey future me - these are PROCESS settings (where the DB lives, pool sizes, intervals).
User-editable settings (library path, remote URL, auto sync) live in the database and
go through AppSettingsService instead, so the UI can change them without a restart.

Environment variables use the SOUNDVAULT_ prefix and "__" for nesting, e.g.
SOUNDVAULT_DATABASE__URL=sqlite+aiosqlite:////data/soundvault.db
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./soundvault.db"
    echo: bool = False
    # Alembic owns the schema in production; tests and first runs can create tables directly
    auto_create_tables: bool = True


class StorageSettings(BaseModel):
    """Local storage settings."""

    # Only used until the user picks a library path (stored in app_settings)
    default_library_path: str = "~/SoundVaultLibrary"


class WorkerSettings(BaseModel):
    """Hashing/metadata worker pool settings."""

    enabled: bool = True
    max_workers: int = Field(default=2, ge=1, le=16)
    task_timeout_seconds: float = Field(default=60.0, gt=0)


class SyncSettings(BaseModel):
    """Sync queue and reconciliation settings."""

    queue_poll_interval_seconds: float = Field(default=15.0, gt=0)
    queue_batch_size: int = Field(default=10, ge=1)
    auto_sync_interval_seconds: float = Field(default=300.0, gt=0)
    # A processing item whose lock is older than this is considered abandoned
    lease_timeout_seconds: int = Field(default=600, ge=1)
    max_retries: int = Field(default=5, ge=1)


class RemoteSettings(BaseModel):
    """Remote object store settings (URL and key are runtime settings/secrets)."""

    bucket: str = "soundvault-files"
    request_timeout_seconds: float = Field(default=60.0, gt=0)


class WatcherSettings(BaseModel):
    """Library folder watcher settings."""

    enabled: bool = True
    # File must be unmodified this long before it's treated as "added"
    stability_seconds: float = Field(default=1.0, ge=0)


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_json_format: bool = False
    # Seconds a background worker gets to finish its cycle on shutdown
    shutdown_timeout: float = Field(default=10.0, gt=0)


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="SOUNDVAULT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "soundvault"
    app_env: str = "production"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8765

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    def _get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite database file path, or None for other backends/in-memory."""
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path == ":memory:":
            return None
        return Path(path)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
