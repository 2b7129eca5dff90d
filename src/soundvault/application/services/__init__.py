"""Application services - import, catalog, sync and settings logic."""

from soundvault.application.services.app_settings_service import (
    AppSettingsService,
    LibrarySettings,
)
from soundvault.application.services.credentials_service import (
    REMOTE_API_KEY,
    CredentialsService,
    RemoteCredentials,
)
from soundvault.application.services.import_service import (
    ImportService,
    PathClaims,
    ensure_library_tree,
)
from soundvault.application.services.library_service import LibraryService
from soundvault.application.services.library_watcher import LibraryWatcher
from soundvault.application.services.metadata_worker_pool import MetadataWorkerPool
from soundvault.application.services.reconciliation_service import ReconciliationService
from soundvault.application.services.remote_store_provider import RemoteStoreProvider
from soundvault.application.services.remote_sync_executor import RemoteSyncExecutor
from soundvault.application.services.sync_queue import SyncQueue, backoff_delay

__all__ = [
    "REMOTE_API_KEY",
    "AppSettingsService",
    "CredentialsService",
    "ImportService",
    "LibraryService",
    "LibrarySettings",
    "LibraryWatcher",
    "MetadataWorkerPool",
    "PathClaims",
    "ReconciliationService",
    "RemoteCredentials",
    "RemoteStoreProvider",
    "RemoteSyncExecutor",
    "SyncQueue",
    "backoff_delay",
    "ensure_library_tree",
]
