"""Tests for the persistent sync queue."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.sync_queue import (
    BACKOFF_SCHEDULE,
    SyncQueue,
    backoff_delay,
)
from soundvault.domain.entities import AssetClass, SyncOperation, SyncStatus
from soundvault.domain.exceptions import EntityNotFoundException, ValidationError

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Settable 'now' shared by every queue instance in a test."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(
    session_factory: async_sessionmaker[AsyncSession], clock: FakeClock
) -> SyncQueue:
    return SyncQueue(session_factory, worker_id="worker-a", clock=clock)


async def _enqueue_upload(queue: SyncQueue, entry_id: str) -> int:
    result = await queue.enqueue(SyncOperation.UPLOAD, entry_id, AssetClass.MUSIC)
    assert result.item.id is not None
    return result.item.id


class TestBackoff:
    def test_schedule(self) -> None:
        assert [backoff_delay(n) for n in range(1, 6)] == list(BACKOFF_SCHEDULE)
        assert backoff_delay(1) == timedelta(seconds=30)
        assert backoff_delay(5) == timedelta(hours=1)

    def test_caps_at_last_tier(self) -> None:
        assert backoff_delay(12) == timedelta(hours=1)


class TestEnqueue:
    """Tests for enqueue() and its dedup rule."""

    async def test_upload_carries_entry_id(self, queue: SyncQueue) -> None:
        result = await queue.enqueue(SyncOperation.UPLOAD, "entry-1", AssetClass.SFX)

        assert not result.already_queued
        assert result.item.entry_id == "entry-1"
        assert result.item.remote_key is None
        assert result.item.status == SyncStatus.PENDING
        assert result.item.asset_class == AssetClass.SFX

    async def test_download_carries_remote_key(self, queue: SyncQueue) -> None:
        result = await queue.enqueue(
            SyncOperation.DOWNLOAD, "music/song_1.wav", AssetClass.MUSIC
        )

        assert result.item.entry_id is None
        assert result.item.remote_key == "music/song_1.wav"

    async def test_duplicate_unfinished_is_not_inserted(self, queue: SyncQueue) -> None:
        first = await queue.enqueue(SyncOperation.UPLOAD, "entry-1", AssetClass.MUSIC)
        second = await queue.enqueue(SyncOperation.UPLOAD, "entry-1", AssetClass.MUSIC)

        assert second.already_queued
        assert second.item.id == first.item.id
        assert (await queue.get_stats()).total == 1

    async def test_same_id_different_operation_is_separate(self, queue: SyncQueue) -> None:
        await queue.enqueue(SyncOperation.DOWNLOAD, "music/a.wav", AssetClass.MUSIC)
        result = await queue.enqueue(SyncOperation.DELETE, "music/a.wav", AssetClass.MUSIC)

        assert not result.already_queued
        assert (await queue.get_stats()).total == 2

    async def test_failed_with_retries_left_still_dedups(self, queue: SyncQueue) -> None:
        item_id = await _enqueue_upload(queue, "entry-1")
        await queue.claim_batch(1)
        await queue.mark_failed(item_id, "boom")

        result = await queue.enqueue(SyncOperation.UPLOAD, "entry-1", AssetClass.MUSIC)

        assert result.already_queued

    async def test_permanently_failed_allows_new_item(
        self, session_factory: async_sessionmaker[AsyncSession], clock: FakeClock
    ) -> None:
        queue = SyncQueue(session_factory, max_retries=1, clock=clock)
        item_id = await _enqueue_upload(queue, "entry-1")
        await queue.claim_batch(1)
        await queue.mark_failed(item_id, "boom")

        result = await queue.enqueue(SyncOperation.UPLOAD, "entry-1", AssetClass.MUSIC)

        assert not result.already_queued
        assert result.item.id != item_id

    async def test_empty_correlating_id_rejected(self, queue: SyncQueue) -> None:
        with pytest.raises(ValidationError):
            await queue.enqueue(SyncOperation.DELETE, "", AssetClass.MUSIC)


class TestClaimBatch:
    """Tests for ordering, limits and leases."""

    async def test_fifo_order_and_limit(self, queue: SyncQueue, clock: FakeClock) -> None:
        ids = []
        for n in range(3):
            ids.append(await _enqueue_upload(queue, f"entry-{n}"))
            clock.advance(timedelta(seconds=1))

        first = await queue.claim_batch(2)
        second = await queue.claim_batch(2)

        assert [item.id for item in first] == ids[:2]
        assert [item.id for item in second] == ids[2:]
        assert all(item.status == SyncStatus.PROCESSING for item in first)
        assert all(item.locked_by == "worker-a" for item in first)

    async def test_same_timestamp_falls_back_to_insert_order(self, queue: SyncQueue) -> None:
        ids = [await _enqueue_upload(queue, f"entry-{n}") for n in range(3)]

        claimed = await queue.claim_batch(10)

        assert [item.id for item in claimed] == ids

    async def test_zero_limit_claims_nothing(self, queue: SyncQueue) -> None:
        await _enqueue_upload(queue, "entry-1")

        assert await queue.claim_batch(0) == []

    async def test_processing_item_not_claimed_twice(self, queue: SyncQueue) -> None:
        await _enqueue_upload(queue, "entry-1")

        assert len(await queue.claim_batch(5)) == 1
        assert await queue.claim_batch(5) == []

    async def test_expired_lease_is_reclaimed(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: SyncQueue,
        clock: FakeClock,
    ) -> None:
        """A consumer that died mid-item can't park the item forever."""
        other = SyncQueue(
            session_factory, lease_timeout_seconds=600, worker_id="worker-b", clock=clock
        )
        item_id = await _enqueue_upload(queue, "entry-1")
        await queue.claim_batch(1)

        clock.advance(timedelta(minutes=5))
        assert await other.claim_batch(1) == []

        clock.advance(timedelta(minutes=6))
        reclaimed = await other.claim_batch(1)

        assert [item.id for item in reclaimed] == [item_id]
        stored = await queue.get_item(item_id)
        assert stored is not None
        assert stored.locked_by == "worker-b"


class TestMarkFailed:
    """Tests for retry bookkeeping."""

    async def test_first_failure_schedules_retry_in_30s(
        self, queue: SyncQueue, clock: FakeClock
    ) -> None:
        item_id = await _enqueue_upload(queue, "entry-1")
        await queue.claim_batch(1)

        item = await queue.mark_failed(item_id, "connection reset")

        assert item.status == SyncStatus.FAILED
        assert item.retry_count == 1
        assert item.last_error == "connection reset"
        assert item.next_retry_at == T0 + timedelta(seconds=30)
        assert item.locked_by is None

    async def test_not_claimable_before_backoff_elapses(
        self, queue: SyncQueue, clock: FakeClock
    ) -> None:
        item_id = await _enqueue_upload(queue, "entry-1")
        await queue.claim_batch(1)
        await queue.mark_failed(item_id, "boom")

        clock.advance(timedelta(seconds=29))
        assert await queue.claim_batch(1) == []

        clock.advance(timedelta(seconds=1))
        assert [item.id for item in await queue.claim_batch(1)] == [item_id]

    async def test_gives_up_after_max_retries(self, queue: SyncQueue, clock: FakeClock) -> None:
        item_id = await _enqueue_upload(queue, "entry-1")
        last_scheduled = None

        for attempt in range(1, 6):
            claimed = await queue.claim_batch(1)
            assert [item.id for item in claimed] == [item_id], f"attempt {attempt}"
            item = await queue.mark_failed(item_id, f"failure {attempt}")
            if attempt < 5:
                assert item.next_retry_at == clock.now + backoff_delay(attempt)
                last_scheduled = item.next_retry_at
                clock.now = item.next_retry_at

        assert item.retry_count == 5
        assert item.is_permanently_failed
        # The final failure doesn't schedule another attempt
        assert item.next_retry_at == last_scheduled

        clock.advance(timedelta(days=1))
        assert await queue.claim_batch(10) == []

        stats = await queue.get_stats()
        assert stats.permanently_failed == 1
        assert stats.retrying == 0

    async def test_unknown_item(self, queue: SyncQueue) -> None:
        with pytest.raises(EntityNotFoundException):
            await queue.mark_failed(999, "boom")


class TestCompletionAndRecovery:
    async def test_completed_items_leave_the_queue(self, queue: SyncQueue) -> None:
        item_id = await _enqueue_upload(queue, "entry-1")
        await queue.claim_batch(1)

        await queue.mark_completed(item_id)

        assert await queue.get_item(item_id) is None
        assert (await queue.get_stats()).total == 0

    async def test_mark_completed_twice_is_harmless(self, queue: SyncQueue) -> None:
        item_id = await _enqueue_upload(queue, "entry-1")
        await queue.mark_completed(item_id)
        await queue.mark_completed(item_id)

    async def test_reset_stuck_items(self, queue: SyncQueue) -> None:
        """Startup recovery: everything left in processing goes back to pending."""
        await _enqueue_upload(queue, "entry-1")
        await _enqueue_upload(queue, "entry-2")
        await queue.claim_batch(10)

        recovered = await queue.reset_stuck_items()

        assert recovered == 2
        pending = await queue.list_items(SyncStatus.PENDING)
        assert len(pending) == 2
        assert all(item.locked_by is None for item in pending)
        assert len(await queue.claim_batch(10)) == 2

    async def test_release_keeps_retry_count(self, queue: SyncQueue) -> None:
        item_id = await _enqueue_upload(queue, "entry-1")
        await queue.claim_batch(1)

        assert await queue.release(item_id) is True

        item = await queue.get_item(item_id)
        assert item is not None
        assert item.status == SyncStatus.PENDING
        assert item.retry_count == 0
        assert item.locked_by is None
        assert [i.id for i in await queue.claim_batch(1)] == [item_id]

    async def test_release_ignores_unclaimed_items(self, queue: SyncQueue) -> None:
        item_id = await _enqueue_upload(queue, "entry-1")

        assert await queue.release(item_id) is False


class TestMaintenance:
    """Tests for stats and manual handling of permanently failed items."""

    @pytest.fixture
    def strict_queue(
        self, session_factory: async_sessionmaker[AsyncSession], clock: FakeClock
    ) -> SyncQueue:
        return SyncQueue(session_factory, max_retries=1, worker_id="worker-a", clock=clock)

    async def _give_up(self, queue: SyncQueue, entry_id: str) -> int:
        item_id = await _enqueue_upload(queue, entry_id)
        await queue.claim_batch(1)
        await queue.mark_failed(item_id, "boom")
        return item_id

    async def test_stats(self, strict_queue: SyncQueue) -> None:
        await self._give_up(strict_queue, "entry-dead")
        await _enqueue_upload(strict_queue, "entry-pending")

        stats = await strict_queue.get_stats()

        assert stats.pending == 1
        assert stats.permanently_failed == 1
        assert stats.total == 2

    async def test_retry_permanently_failed(self, strict_queue: SyncQueue) -> None:
        item_id = await self._give_up(strict_queue, "entry-dead")

        assert await strict_queue.retry_permanently_failed() == 1

        item = await strict_queue.get_item(item_id)
        assert item is not None
        assert item.status == SyncStatus.PENDING
        assert item.retry_count == 0
        assert item.next_retry_at is None
        assert [i.id for i in await strict_queue.claim_batch(1)] == [item_id]

    async def test_clear_permanently_failed(self, strict_queue: SyncQueue) -> None:
        dead_id = await self._give_up(strict_queue, "entry-dead")
        alive_id = await _enqueue_upload(strict_queue, "entry-alive")

        assert await strict_queue.clear_permanently_failed() == 1

        assert await strict_queue.get_item(dead_id) is None
        assert await strict_queue.get_item(alive_id) is not None
