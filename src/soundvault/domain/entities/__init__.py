"""Domain entities for SoundVault."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class AssetClass(str, Enum):
    """Kind of audio asset. Also the name of its library sub-folder and remote prefix."""

    MUSIC = "music"
    SFX = "sfx"


# Hey future me - CatalogEntry is ONE physical audio file inside the managed library.
# content_hash is the identity: two byte-identical files collapse to one entry no matter
# what they're called. remote_key is the ONLY link to the remote mirror - reconciliation
# never looks at filenames or hashes on the remote side, just the key. So remote_key must
# be set to exactly the listing key of the uploaded object, never something "close".
@dataclass
class CatalogEntry:
    """One tracked local audio asset and its metadata."""

    filename: str
    asset_class: AssetClass
    local_path: str
    content_hash: str
    duration_seconds: float = 0.0
    size_bytes: int = 0
    tags: list[str] = field(default_factory=list)
    bpm: float | None = None
    favorite: bool = False
    remote_key: str | None = None
    remote_url: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_mirrored(self) -> bool:
        """True when the entry is believed to exist in the remote store."""
        return self.remote_key is not None

    def touch(self) -> None:
        """Bump updated_at. Call on every mutation."""
        self.updated_at = datetime.now(UTC)

    def mark_mirrored(self, remote_key: str, remote_url: str | None) -> None:
        """Record the remote identifiers after a successful upload/download."""
        self.remote_key = remote_key
        self.remote_url = remote_url
        self.touch()

    def clear_mirror(self) -> None:
        """Forget the remote identifiers (remote object was deleted)."""
        self.remote_key = None
        self.remote_url = None
        self.touch()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for notifications and API responses."""
        return {
            "id": self.id,
            "filename": self.filename,
            "asset_class": self.asset_class.value,
            "local_path": self.local_path,
            "content_hash": self.content_hash,
            "duration_seconds": self.duration_seconds,
            "size_bytes": self.size_bytes,
            "tags": list(self.tags),
            "bpm": self.bpm,
            "favorite": self.favorite,
            "remote_key": self.remote_key,
            "remote_url": self.remote_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class SyncOperation(str, Enum):
    """Remote operation carried by a sync queue item."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"


class SyncStatus(str, Enum):
    """Status of a sync queue item.

    COMPLETED is only a transient label - completed rows are deleted from the queue.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"
    COMPLETED = "completed"


# Listen up, SyncQueueItem carries EITHER entry_id (upload) OR remote_key (download/delete).
# correlation_id picks the right one so dedup and logging don't have to care which kind of
# item they're looking at. A FAILED item with retry_count >= max_retries is "permanently
# failed": it stays queryable in stats but the claimer never picks it up again.
@dataclass
class SyncQueueItem:
    """One unfinished remote operation."""

    operation: SyncOperation
    asset_class: AssetClass
    entry_id: str | None = None
    remote_key: str | None = None
    status: SyncStatus = SyncStatus.PENDING
    retry_count: int = 0
    max_retries: int = 5
    last_error: str | None = None
    next_retry_at: datetime | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None
    id: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def correlation_id(self) -> str:
        """Entry id for uploads, remote key for downloads and deletes."""
        if self.operation == SyncOperation.UPLOAD:
            return self.entry_id or ""
        return self.remote_key or ""

    @property
    def is_permanently_failed(self) -> bool:
        """True once the retry cap is reached - needs manual intervention."""
        return self.status == SyncStatus.FAILED and self.retry_count >= self.max_retries

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "id": self.id,
            "operation": self.operation.value,
            "entry_id": self.entry_id,
            "remote_key": self.remote_key,
            "asset_class": self.asset_class.value,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "last_error": self.last_error,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "permanently_failed": self.is_permanently_failed,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class FileMetadata:
    """Derived metadata for one file (hash may be empty for probe-only requests)."""

    content_hash: str
    duration_seconds: float
    size_bytes: int


@dataclass
class ImportResult:
    """Aggregated outcome of an import batch, each list in input order."""

    success: list[CatalogEntry] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EnqueueResult:
    """Outcome of SyncQueue.enqueue."""

    item: SyncQueueItem
    already_queued: bool = False


@dataclass(frozen=True)
class QueueStats:
    """Sync queue counters."""

    pending: int = 0
    processing: int = 0
    retrying: int = 0
    permanently_failed: int = 0
    total: int = 0


@dataclass(frozen=True)
class SyncStatusSummary:
    """How far local and remote are apart."""

    upload_needed: int = 0
    download_needed: int = 0
    configured: bool = True


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a full reconciliation pass."""

    uploaded: int = 0
    downloaded: int = 0
    failed: int = 0
    configured: bool = True
    skipped: bool = False


@dataclass(frozen=True)
class LibraryStats:
    """Catalog counters."""

    music_count: int = 0
    sfx_count: int = 0
    total_size_bytes: int = 0
    mirrored_count: int = 0
    favorite_count: int = 0

    @property
    def total_count(self) -> int:
        return self.music_count + self.sfx_count


__all__ = [
    "AssetClass",
    "CatalogEntry",
    "SyncOperation",
    "SyncStatus",
    "SyncQueueItem",
    "FileMetadata",
    "ImportResult",
    "EnqueueResult",
    "QueueStats",
    "SyncStatusSummary",
    "SyncResult",
    "LibraryStats",
]
