"""API schemas for sync status, sync runs and the sync queue."""

from datetime import datetime

from pydantic import BaseModel, Field

from soundvault.domain.entities import (
    AssetClass,
    QueueStats,
    SyncOperation,
    SyncQueueItem,
    SyncResult,
    SyncStatus,
    SyncStatusSummary,
)


class SyncStatusResponse(BaseModel):
    """How far local and remote are apart (nothing is changed)."""

    upload_needed: int
    download_needed: int
    configured: bool

    @classmethod
    def from_entity(cls, summary: SyncStatusSummary) -> "SyncStatusResponse":
        return cls(
            upload_needed=summary.upload_needed,
            download_needed=summary.download_needed,
            configured=summary.configured,
        )


class SyncResultResponse(BaseModel):
    """Outcome of a full sync."""

    uploaded: int
    downloaded: int
    failed: int
    skipped: bool = Field(description="True when another sync was already running")

    @classmethod
    def from_entity(cls, result: SyncResult) -> "SyncResultResponse":
        return cls(
            uploaded=result.uploaded,
            downloaded=result.downloaded,
            failed=result.failed,
            skipped=result.skipped,
        )


class ScheduleSyncResponse(BaseModel):
    """Outcome of queue-backed scheduling."""

    queued: int = Field(description="Newly queued operations (already queued ones excluded)")


class QueueStatsResponse(BaseModel):
    """Sync queue counters."""

    pending: int
    processing: int
    retrying: int
    permanently_failed: int
    total: int

    @classmethod
    def from_entity(cls, stats: QueueStats) -> "QueueStatsResponse":
        return cls(
            pending=stats.pending,
            processing=stats.processing,
            retrying=stats.retrying,
            permanently_failed=stats.permanently_failed,
            total=stats.total,
        )


class QueueItemResponse(BaseModel):
    """One sync queue item."""

    id: int
    operation: SyncOperation
    asset_class: AssetClass
    entry_id: str | None
    remote_key: str | None
    status: SyncStatus
    retry_count: int
    max_retries: int
    last_error: str | None
    next_retry_at: datetime | None
    permanently_failed: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, item: SyncQueueItem) -> "QueueItemResponse":
        assert item.id is not None
        return cls(
            id=item.id,
            operation=item.operation,
            asset_class=item.asset_class,
            entry_id=item.entry_id,
            remote_key=item.remote_key,
            status=item.status,
            retry_count=item.retry_count,
            max_retries=item.max_retries,
            last_error=item.last_error,
            next_retry_at=item.next_retry_at,
            permanently_failed=item.is_permanently_failed,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class QueueMaintenanceResponse(BaseModel):
    """How many queue items a maintenance action touched."""

    affected: int


class ProcessQueueResponse(BaseModel):
    """Outcome of draining one queue batch on demand."""

    completed: int
