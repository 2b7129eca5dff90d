"""Persistence layer: database, ORM models and repositories."""

from soundvault.infrastructure.persistence.database import Database
from soundvault.infrastructure.persistence.repositories import (
    AppSettingsRepository,
    CatalogRepository,
    SyncQueueRepository,
)

__all__ = [
    "Database",
    "AppSettingsRepository",
    "CatalogRepository",
    "SyncQueueRepository",
]
