"""Sync Queue Worker - drains the persistent sync queue.

Hey future me - this worker is what makes the OFFLINE queue actually go somewhere!

Every poll_interval seconds it:
1. Checks the remote is configured (URL + API key). If not, it does NOTHING - items stay
   pending, no attempt is burned, no retry_count goes up. Configure the remote later and
   the backlog drains on the next cycle.
2. Claims a batch (oldest first; retry-eligible FAILED items and expired leases included)
3. Runs each item through RemoteSyncExecutor, one at a time
4. mark_completed() on success, mark_failed(error) on any other exception

The executor re-reads credentials per item. If the remote goes away mid-batch (key removed,
host unreachable) RemoteUnavailableError releases the rest of the batch back to PENDING with
retry_count untouched, same as step 1.

FLOW:
enqueue() → PENDING → claim_batch() → PROCESSING → executor.execute()
  → success: row deleted
  → failure: FAILED + next_retry_at (30s, 1m, 5m, 15m, 1h) → claimed again later
  → 5th failure: permanently failed, stays visible until retried or cleared
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from soundvault.application.services.remote_store_provider import RemoteStoreProvider
from soundvault.application.services.remote_sync_executor import RemoteSyncExecutor
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.domain.exceptions import RemoteUnavailableError
from soundvault.infrastructure.observability.logging import set_correlation_id

logger = logging.getLogger(__name__)


class SyncQueueWorker:
    """Worker that executes queued uploads, downloads and deletes.

    Lifecycle:
    - Created in lifecycle.py during app startup
    - Runs as asyncio task via start()
    - Stopped via stop() during shutdown; run_once() is what tests and the
      "process now" path call directly
    """

    def __init__(
        self,
        sync_queue: SyncQueue,
        executor: RemoteSyncExecutor,
        remote_provider: RemoteStoreProvider,
        poll_interval: float = 15.0,
        batch_size: int = 10,
    ) -> None:
        """Initialize the sync queue worker.

        Args:
            sync_queue: Queue to claim items from
            executor: Runs a single item against the remote
            remote_provider: Tells whether the remote is configured
            poll_interval: Seconds between queue checks (default: 15)
            batch_size: Max items claimed per cycle (default: 10)
        """
        self._sync_queue = sync_queue
        self._executor = executor
        self._remote_provider = remote_provider
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._running = False
        self._stop_event = asyncio.Event()
        self._stats: dict[str, Any] = {
            "total_completed": 0,
            "total_failed": 0,
            "last_run_at": None,
            "completed_last_cycle": 0,
            "failed_last_cycle": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker. Runs continuously until stop() is called."""
        if self._stop_event.is_set():
            return
        self._running = True
        logger.info(
            f"SyncQueueWorker started (poll_interval={self._poll_interval}s, "
            f"batch_size={self._batch_size})"
        )

        while self._running:
            set_correlation_id()
            try:
                await self.run_once()
            except Exception as e:
                # Log but don't crash - next cycle tries again
                logger.exception(f"SyncQueueWorker error: {e}")

            # Sleep until the next poll; stop() cuts it short
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        self._stop_event.set()
        logger.info("SyncQueueWorker stopping...")

    async def run_once(self) -> int:
        """Claim one batch and process it.

        Returns:
            Number of items that completed successfully
        """
        self._stats["last_run_at"] = datetime.now(UTC).isoformat()
        self._stats["completed_last_cycle"] = 0
        self._stats["failed_last_cycle"] = 0

        if not await self._remote_provider.is_configured():
            logger.debug("Remote not configured, sync queue left untouched")
            return 0

        items = await self._sync_queue.claim_batch(self._batch_size)
        completed = 0
        for index, item in enumerate(items):
            assert item.id is not None
            try:
                await self._executor.execute(item)
            except RemoteUnavailableError as e:
                # Offline is not the item's fault: hand the rest of the batch back untouched
                unclaimed = items[index:]
                for pending in unclaimed:
                    assert pending.id is not None
                    await self._sync_queue.release(pending.id)
                logger.info(
                    f"Remote unavailable ({e.message}), released {len(unclaimed)} "
                    f"sync item(s) without spending a retry"
                )
                break
            except Exception as e:
                logger.warning(
                    f"Sync item {item.id} ({item.operation.value} "
                    f"{item.correlation_id}) failed: {e}"
                )
                await self._sync_queue.mark_failed(item.id, str(e) or type(e).__name__)
                self._stats["failed_last_cycle"] += 1
                self._stats["total_failed"] += 1
                continue

            await self._sync_queue.mark_completed(item.id)
            completed += 1
            self._stats["completed_last_cycle"] += 1
            self._stats["total_completed"] += 1

        if items:
            logger.info(
                f"Processed {len(items)} sync item(s): {completed} completed, "
                f"{self._stats['failed_last_cycle']} failed"
            )
        return completed

    def get_stats(self) -> dict[str, Any]:
        """Get worker statistics.

        Returns:
            Dictionary with processing statistics
        """
        return {
            **self._stats,
            "running": self._running,
            "poll_interval": self._poll_interval,
            "batch_size": self._batch_size,
            "worker_id": self._sync_queue.worker_id,
        }


# Hey future me - factory function for easy worker creation from app context
def create_sync_queue_worker(
    sync_queue: SyncQueue,
    executor: RemoteSyncExecutor,
    remote_provider: RemoteStoreProvider,
    poll_interval: float = 15.0,
    batch_size: int = 10,
) -> SyncQueueWorker:
    """Create a SyncQueueWorker with the given configuration.

    Args:
        sync_queue: Queue to claim items from
        executor: Runs a single item against the remote
        remote_provider: Tells whether the remote is configured
        poll_interval: Seconds between queue checks
        batch_size: Max items claimed per cycle

    Returns:
        Configured SyncQueueWorker instance
    """
    return SyncQueueWorker(
        sync_queue=sync_queue,
        executor=executor,
        remote_provider=remote_provider,
        poll_interval=poll_interval,
        batch_size=batch_size,
    )
