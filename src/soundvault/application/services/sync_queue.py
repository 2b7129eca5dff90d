"""Sync Queue - durable, ordered queue of remote operations.

Hey future me - this is the OFFLINE queue! Every upload/download/delete that couldn't (or
shouldn't) run right away lands here and survives restarts in the sync_queue table.

LIFECYCLE:
```
enqueue() → PENDING ──claim_batch()──► PROCESSING ──mark_completed()──► (row deleted)
                ▲                          │
                │                   mark_failed()
                │                          ▼
                └──── (backoff elapsed) ── FAILED (retry_count < max_retries)
                                           FAILED (retry_count >= max_retries)
                                             = permanently failed, manual action only
```

BACKOFF: 30s, 1m, 5m, 15m, 1h - indexed by retry_count-1, capped at the last tier.

CRASH SAFETY (two layers):
1. reset_stuck_items() at startup: every PROCESSING row goes back to PENDING.
2. Lease: claim_batch() stamps locked_by/locked_at; a PROCESSING row whose lease is older
   than lease_timeout is claimable again, so a dead consumer can't park work forever even
   without a restart.

At-least-once: a crash between remote success and mark_completed() replays the operation.
The remote adapter operations are idempotent (upload overwrites, delete of absent is OK).
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.domain.entities import (
    AssetClass,
    EnqueueResult,
    QueueStats,
    SyncOperation,
    SyncQueueItem,
    SyncStatus,
)
from soundvault.domain.exceptions import EntityNotFoundException, ValidationError
from soundvault.infrastructure.persistence.models import utc_now
from soundvault.infrastructure.persistence.repositories import SyncQueueRepository

logger = logging.getLogger(__name__)

BACKOFF_SCHEDULE: tuple[timedelta, ...] = (
    timedelta(seconds=30),
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=15),
    timedelta(hours=1),
)
DEFAULT_MAX_RETRIES = 5


def backoff_delay(retry_count: int) -> timedelta:
    """Delay before the next attempt after the retry_count-th failure (1-based)."""
    index = min(max(retry_count - 1, 0), len(BACKOFF_SCHEDULE) - 1)
    return BACKOFF_SCHEDULE[index]


class SyncQueue:
    """Persistent queue of remote sync operations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_retries: int = DEFAULT_MAX_RETRIES,
        lease_timeout_seconds: int = 600,
        worker_id: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the queue.

        Args:
            session_factory: Factory for short-lived DB sessions
            max_retries: Attempts before an item is permanently failed
            lease_timeout_seconds: Age after which a PROCESSING lock counts as abandoned
            worker_id: ID stamped into locked_by (auto-generated if None)
            clock: Returns "now" as an aware UTC datetime (tests pin it)
        """
        self._session_factory = session_factory
        self._max_retries = max_retries
        self._lease_timeout = timedelta(seconds=lease_timeout_seconds)
        self._worker_id = worker_id or f"sync-{uuid.uuid4().hex[:8]}"
        self._clock = clock
        # Serializes the find-then-insert in enqueue() within this process
        self._enqueue_lock = asyncio.Lock()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    async def enqueue(
        self,
        operation: SyncOperation,
        correlating_id: str,
        asset_class: AssetClass,
        remote_key: str | None = None,
    ) -> EnqueueResult:
        """Add an operation unless an equivalent one is still unfinished.

        Args:
            operation: upload, download or delete
            correlating_id: Catalog entry id (upload) or remote key (download/delete)
            asset_class: Routes the operation to the right remote prefix/library folder
            remote_key: Known remote key (defaults to correlating_id for download/delete)

        Returns:
            EnqueueResult; already_queued=True means nothing was inserted
        """
        if not correlating_id:
            raise ValidationError(f"{operation.value} needs a correlating id")

        if operation == SyncOperation.UPLOAD:
            entry_id, key = correlating_id, remote_key
        else:
            entry_id, key = None, remote_key or correlating_id

        async with self._enqueue_lock, self._session_factory() as session:
            repo = SyncQueueRepository(session)
            existing = await repo.find_unfinished(operation, correlating_id)
            if existing is not None:
                logger.debug(
                    f"{operation.value} for {correlating_id} already queued as item {existing.id}"
                )
                return EnqueueResult(item=existing, already_queued=True)

            now = self._clock()
            item = await repo.add(
                SyncQueueItem(
                    operation=operation,
                    asset_class=asset_class,
                    entry_id=entry_id,
                    remote_key=key,
                    max_retries=self._max_retries,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        logger.info(f"Queued {operation.value} for {correlating_id} (item {item.id})")
        return EnqueueResult(item=item)

    async def claim_batch(self, limit: int) -> list[SyncQueueItem]:
        """Claim up to limit eligible items, oldest first, and mark them PROCESSING."""
        if limit <= 0:
            return []
        now = self._clock()
        claimed: list[SyncQueueItem] = []

        async with self._session_factory() as session:
            repo = SyncQueueRepository(session)
            candidates = await repo.list_claimable(now, now - self._lease_timeout, limit)
            for candidate in candidates:
                if candidate.status == SyncStatus.PROCESSING:
                    logger.warning(
                        f"Reclaiming sync item {candidate.id}: lease held by "
                        f"{candidate.locked_by} expired"
                    )
                if not await repo.try_lock(candidate, self._worker_id, now):
                    continue
                candidate.status = SyncStatus.PROCESSING
                candidate.locked_by = self._worker_id
                candidate.locked_at = now
                candidate.updated_at = now
                claimed.append(candidate)
            await session.commit()

        if claimed:
            logger.debug(f"Claimed {len(claimed)} sync item(s)")
        return claimed

    async def mark_completed(self, item_id: int) -> None:
        """Finished items leave the queue."""
        async with self._session_factory() as session:
            deleted = await SyncQueueRepository(session).delete(item_id)
            await session.commit()
        if not deleted:
            logger.debug(f"Sync item {item_id} already gone when marking completed")

    async def mark_failed(self, item_id: int, error_message: str) -> SyncQueueItem:
        """Record a failed attempt and schedule the next one (or give up).

        Below the cap: status FAILED, next_retry_at = now + backoff.
        At the cap: status FAILED, next_retry_at left as it was, never claimed again.

        Raises:
            EntityNotFoundException: If the item doesn't exist
        """
        async with self._session_factory() as session:
            repo = SyncQueueRepository(session)
            item = await repo.get(item_id)
            if item is None:
                raise EntityNotFoundException("SyncQueueItem", item_id)

            now = self._clock()
            item.retry_count += 1
            item.status = SyncStatus.FAILED
            item.last_error = error_message
            item.updated_at = now
            item.locked_by = None
            item.locked_at = None
            if item.retry_count < item.max_retries:
                item.next_retry_at = now + backoff_delay(item.retry_count)
            await repo.save_failure(item)
            await session.commit()

        if item.is_permanently_failed:
            logger.error(
                f"Sync item {item_id} ({item.operation.value} {item.correlation_id}) "
                f"permanently failed after {item.retry_count} attempts: {error_message}"
            )
        else:
            logger.warning(
                f"Sync item {item_id} failed (attempt {item.retry_count}/{item.max_retries}), "
                f"retry at {item.next_retry_at:%H:%M:%S}: {error_message}"
            )
        return item

    async def release(self, item_id: int) -> bool:
        """Put a claimed item back to PENDING without spending an attempt.

        For items that were never really tried (the remote went away mid-batch).
        Returns False if the item is no longer processing.
        """
        async with self._session_factory() as session:
            released = await SyncQueueRepository(session).release(item_id, self._clock())
            await session.commit()
        return released

    async def reset_stuck_items(self) -> int:
        """Move every PROCESSING item back to PENDING. Run once at startup."""
        async with self._session_factory() as session:
            count = await SyncQueueRepository(session).reset_processing(self._clock())
            await session.commit()
        if count:
            logger.info(f"Recovered {count} sync item(s) left in processing")
        return count

    async def get_stats(self) -> QueueStats:
        async with self._session_factory() as session:
            counts = await SyncQueueRepository(session).count_by_status()
        return QueueStats(**counts)

    async def get_item(self, item_id: int) -> SyncQueueItem | None:
        async with self._session_factory() as session:
            return await SyncQueueRepository(session).get(item_id)

    async def list_items(self, status: SyncStatus | None = None) -> list[SyncQueueItem]:
        async with self._session_factory() as session:
            return await SyncQueueRepository(session).list_items(status)

    async def clear_permanently_failed(self) -> int:
        """Drop items that exhausted their retries. Returns how many were removed."""
        async with self._session_factory() as session:
            count = await SyncQueueRepository(session).delete_permanently_failed()
            await session.commit()
        if count:
            logger.info(f"Cleared {count} permanently failed sync item(s)")
        return count

    async def retry_permanently_failed(self) -> int:
        """Manual retry: permanently failed items start over as PENDING."""
        async with self._session_factory() as session:
            count = await SyncQueueRepository(session).reset_permanently_failed(
                self._clock()
            )
            await session.commit()
        if count:
            logger.info(f"Re-queued {count} permanently failed sync item(s)")
        return count
