"""Tests for sync status, full sync and scheduling."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.app_settings_service import AppSettingsService
from soundvault.application.services.import_service import ImportService
from soundvault.application.services.reconciliation_service import ReconciliationService
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.domain.entities import SyncOperation
from soundvault.domain.exceptions import RemoteUnavailableError
from soundvault.domain.ports.remote_store import RemoteListPage
from soundvault.infrastructure.persistence.repositories import CatalogRepository
from tests.conftest import FakeRemoteStore, RecordingSink, write_audio

ConfigureRemote = Callable[[], Awaitable[None]]


@pytest.fixture
async def two_local_entries(import_service: ImportService, source_dir: Path) -> None:
    await import_service.import_files(
        [
            write_audio(source_dir / "song.wav", b"song-bytes"),
            write_audio(source_dir / "door_whoosh.wav", b"whoosh-bytes"),
        ]
    )


class TestComputeSyncStatus:
    async def test_counts_both_directions(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
        two_local_entries: None,
    ) -> None:
        await configure_remote()
        remote_store.objects["music/remote_track_1.wav"] = b"remote-only"

        status = await reconciliation.compute_sync_status()

        assert status.configured
        assert status.upload_needed == 2
        assert status.download_needed == 1

    async def test_not_configured_still_counts_uploads(
        self, reconciliation: ReconciliationService, two_local_entries: None
    ) -> None:
        status = await reconciliation.compute_sync_status()

        assert not status.configured
        assert status.upload_needed == 2
        assert status.download_needed == 0

    async def test_bucket_created_on_first_use(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
    ) -> None:
        await configure_remote()

        await reconciliation.compute_sync_status()

        assert remote_store.bucket_ready


class TestFullSync:
    """Tests for ReconciliationService.full_sync()."""

    async def test_not_configured_does_nothing(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        two_local_entries: None,
    ) -> None:
        result = await reconciliation.full_sync()

        assert not result.configured
        assert remote_store.uploads == []

    async def test_uploads_then_downloads(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        session_factory: async_sessionmaker[AsyncSession],
        configure_remote: ConfigureRemote,
        sink: RecordingSink,
        library_root: Path,
        two_local_entries: None,
    ) -> None:
        await configure_remote()
        remote_store.objects["music/remote_track_1.wav"] = b"remote-only"

        result = await reconciliation.full_sync()

        assert (result.uploaded, result.downloaded, result.failed) == (2, 1, 0)
        assert not result.skipped

        async with session_factory() as session:
            entries = await CatalogRepository(session).list_entries()
            last_sync = (await AppSettingsService(session).get_library_settings()).last_sync_at
        assert len(entries) == 3
        assert all(entry.remote_key for entry in entries)
        # Every catalog key is exactly a listed key
        assert {entry.remote_key for entry in entries} == set(remote_store.objects)
        assert last_sync is not None

        downloaded = (library_root / "music" / "remote_track_1.wav").resolve()
        assert downloaded.read_bytes() == b"remote-only"

        [complete] = sink.named("sync-complete")
        assert complete.synced == 3

    async def test_second_run_is_a_no_op(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
        two_local_entries: None,
    ) -> None:
        """A downloaded file is never offered back as an upload."""
        await configure_remote()
        remote_store.objects["sfx/remote_hit.wav"] = b"remote-only"

        await reconciliation.full_sync()
        uploads_after_first = list(remote_store.uploads)
        second = await reconciliation.full_sync()

        assert (second.uploaded, second.downloaded, second.failed) == (0, 0, 0)
        assert remote_store.uploads == uploads_after_first
        status = await reconciliation.compute_sync_status()
        assert (status.upload_needed, status.download_needed) == (0, 0)

    async def test_copy_of_mirrored_content_is_not_counted(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
        two_local_entries: None,
    ) -> None:
        """Same bytes under another key: discarded, so repeat runs report nothing."""
        await configure_remote()
        await reconciliation.full_sync()
        remote_store.objects["music/other_device_copy.wav"] = b"song-bytes"

        second = await reconciliation.full_sync()
        third = await reconciliation.full_sync()

        assert (second.uploaded, second.downloaded, second.failed) == (0, 0, 0)
        assert (third.uploaded, third.downloaded, third.failed) == (0, 0, 0)

    async def test_listing_spans_pages(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
    ) -> None:
        await configure_remote()
        for n in range(5):
            remote_store.objects[f"music/track_{n}.wav"] = f"track-{n}".encode()

        result = await reconciliation.full_sync()

        assert result.downloaded == 5

    async def test_failures_are_counted_not_fatal(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        session_factory: async_sessionmaker[AsyncSession],
        configure_remote: ConfigureRemote,
        import_service: ImportService,
        source_dir: Path,
    ) -> None:
        await configure_remote()
        await import_service.import_files(
            [
                write_audio(source_dir / "broken_song.wav", b"one"),
                write_audio(source_dir / "song.wav", b"two"),
            ]
        )
        remote_store.fail_markers.add("broken")

        result = await reconciliation.full_sync()

        assert (result.uploaded, result.failed) == (1, 1)
        async with session_factory() as session:
            unmirrored = await CatalogRepository(session).list_unmirrored()
        assert [entry.filename for entry in unmirrored] == ["broken_song.wav"]

    async def test_concurrent_trigger_is_skipped(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
    ) -> None:
        await configure_remote()
        gate = asyncio.Event()
        original_list = remote_store.list

        async def slow_list(prefix: str, page_token: str | None = None) -> RemoteListPage:
            await gate.wait()
            return await original_list(prefix, page_token)

        remote_store.list = slow_list  # type: ignore[method-assign]

        first = asyncio.create_task(reconciliation.full_sync())
        await asyncio.sleep(0)
        assert reconciliation.is_running

        second = await reconciliation.full_sync()
        gate.set()
        first_result = await first

        assert second.skipped
        assert not first_result.skipped
        assert not reconciliation.is_running


class TestScheduleSync:
    async def test_requires_remote(self, reconciliation: ReconciliationService) -> None:
        with pytest.raises(RemoteUnavailableError):
            await reconciliation.schedule_sync()

    async def test_queues_delta_once(
        self,
        reconciliation: ReconciliationService,
        remote_store: FakeRemoteStore,
        sync_queue: SyncQueue,
        configure_remote: ConfigureRemote,
        two_local_entries: None,
    ) -> None:
        await configure_remote()
        remote_store.objects["sfx/remote_hit.wav"] = b"remote-only"

        assert await reconciliation.schedule_sync() == 3
        assert await reconciliation.schedule_sync() == 0

        items = await sync_queue.list_items()
        operations = sorted(item.operation.value for item in items)
        assert operations == [
            SyncOperation.DOWNLOAD.value,
            SyncOperation.UPLOAD.value,
            SyncOperation.UPLOAD.value,
        ]
        [download] = [i for i in items if i.operation == SyncOperation.DOWNLOAD]
        assert download.remote_key == "sfx/remote_hit.wav"
        # Nothing ran yet
        assert remote_store.uploads == []
