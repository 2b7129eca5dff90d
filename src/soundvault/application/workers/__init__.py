"""Worker system - background sync processing."""

from soundvault.application.workers.auto_sync_worker import AutoSyncWorker
from soundvault.application.workers.sync_queue_worker import (
    SyncQueueWorker,
    create_sync_queue_worker,
)

__all__ = [
    "AutoSyncWorker",
    "SyncQueueWorker",
    "create_sync_queue_worker",
]
