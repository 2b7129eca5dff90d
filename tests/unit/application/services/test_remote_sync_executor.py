"""Tests for single remote operations (upload, download, delete)."""

from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.import_service import ImportService
from soundvault.application.services.remote_sync_executor import RemoteSyncExecutor
from soundvault.domain.entities import AssetClass, CatalogEntry, SyncOperation, SyncQueueItem
from soundvault.domain.exceptions import (
    RemoteOperationError,
    RemoteUnavailableError,
    ValidationError,
)
from soundvault.infrastructure.persistence.repositories import CatalogRepository
from tests.conftest import FakeRemoteStore, RecordingSink, write_audio

ConfigureRemote = Callable[[], Awaitable[None]]


async def _import_one(
    import_service: ImportService, source_dir: Path, name: str, data: bytes
) -> CatalogEntry:
    result = await import_service.import_files([write_audio(source_dir / name, data)])
    return result.success[0]


async def _get(
    session_factory: async_sessionmaker[AsyncSession], entry_id: str
) -> CatalogEntry | None:
    async with session_factory() as session:
        return await CatalogRepository(session).get(entry_id)


class TestUpload:
    async def test_records_remote_identifiers(
        self,
        executor: RemoteSyncExecutor,
        import_service: ImportService,
        remote_store: FakeRemoteStore,
        session_factory: async_sessionmaker[AsyncSession],
        configure_remote: ConfigureRemote,
        source_dir: Path,
    ) -> None:
        await configure_remote()
        entry = await _import_one(import_service, source_dir, "door_whoosh.wav", b"abc")

        updated = await executor.upload_entry(entry.id)

        assert updated is not None
        expected_key = f"sfx/{Path(entry.local_path).name}"
        assert updated.remote_key == expected_key
        assert updated.remote_url == remote_store.public_url(expected_key)
        assert remote_store.objects[expected_key] == b"abc"
        assert remote_store.content_types[expected_key] == "audio/wav"
        stored = await _get(session_factory, entry.id)
        assert stored is not None and stored.remote_key == expected_key

    async def test_replay_overwrites_same_key(
        self,
        executor: RemoteSyncExecutor,
        import_service: ImportService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
        source_dir: Path,
    ) -> None:
        await configure_remote()
        entry = await _import_one(import_service, source_dir, "song.wav", b"abc")

        await executor.upload_entry(entry.id)
        await executor.upload_entry(entry.id)

        assert len(remote_store.objects) == 1
        assert len(remote_store.uploads) == 2

    async def test_shared_key_is_logged(
        self,
        executor: RemoteSyncExecutor,
        import_service: ImportService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Same filename in two subfolders: both map to one key, second upload warns."""
        await configure_remote()
        root = await import_service.get_library_root()
        first = await import_service.ingest_library_file(
            write_audio(root / "music" / "a" / "song.wav", b"first")
        )
        second = await import_service.ingest_library_file(
            write_audio(root / "music" / "b" / "song.wav", b"second")
        )
        assert first is not None and second is not None

        await executor.upload_entry(first.id)
        assert "already held" not in caplog.text

        with caplog.at_level("WARNING"):
            mirrored = await executor.upload_entry(second.id)

        assert mirrored is not None and mirrored.remote_key == "music/song.wav"
        assert "music/song.wav is already held" in caplog.text
        # Upload still goes through
        assert remote_store.objects["music/song.wav"] == b"second"

    async def test_missing_entry_is_skipped(
        self, executor: RemoteSyncExecutor, configure_remote: ConfigureRemote
    ) -> None:
        await configure_remote()

        assert await executor.upload_entry("no-such-entry") is None

    async def test_not_configured(
        self,
        executor: RemoteSyncExecutor,
        import_service: ImportService,
        source_dir: Path,
    ) -> None:
        entry = await _import_one(import_service, source_dir, "song.wav", b"abc")

        with pytest.raises(RemoteUnavailableError):
            await executor.upload_entry(entry.id)

    async def test_remote_rejection_propagates(
        self,
        executor: RemoteSyncExecutor,
        import_service: ImportService,
        remote_store: FakeRemoteStore,
        session_factory: async_sessionmaker[AsyncSession],
        configure_remote: ConfigureRemote,
        source_dir: Path,
    ) -> None:
        await configure_remote()
        entry = await _import_one(import_service, source_dir, "song.wav", b"abc")
        remote_store.fail_markers.add("song")

        with pytest.raises(RemoteOperationError):
            await executor.upload_entry(entry.id)

        stored = await _get(session_factory, entry.id)
        assert stored is not None and stored.remote_key is None


class TestDownload:
    async def test_new_entry_carries_key(
        self,
        executor: RemoteSyncExecutor,
        remote_store: FakeRemoteStore,
        sink: RecordingSink,
        configure_remote: ConfigureRemote,
    ) -> None:
        await configure_remote()
        remote_store.objects["sfx/glass_break.wav"] = b"glass"

        entry = await executor.download_object("sfx/glass_break.wav", AssetClass.SFX)

        assert entry is not None
        assert entry.remote_key == "sfx/glass_break.wav"
        assert entry.asset_class == AssetClass.SFX
        assert Path(entry.local_path).name == "glass_break.wav"
        assert Path(entry.local_path).read_bytes() == b"glass"
        assert [e.type for e in sink.named("library-updated")] == ["add"]

    async def test_name_clash_gets_new_local_name(
        self,
        executor: RemoteSyncExecutor,
        import_service: ImportService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
    ) -> None:
        await configure_remote()
        root = await import_service.get_library_root()
        write_audio(root / "music" / "song.wav", b"local file, not cataloged")
        remote_store.objects["music/song.wav"] = b"remote"

        entry = await executor.download_object("music/song.wav", AssetClass.MUSIC)

        assert entry is not None
        assert Path(entry.local_path).name != "song.wav"
        assert (root / "music" / "song.wav").read_bytes() == b"local file, not cataloged"

    async def test_known_key_is_a_no_op(
        self,
        executor: RemoteSyncExecutor,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
    ) -> None:
        await configure_remote()
        remote_store.objects["music/a.wav"] = b"a"

        first = await executor.download_object("music/a.wav", AssetClass.MUSIC)
        second = await executor.download_object("music/a.wav", AssetClass.MUSIC)

        assert first is not None and second is not None
        assert second.id == first.id

    async def test_same_content_links_existing_entry(
        self,
        executor: RemoteSyncExecutor,
        import_service: ImportService,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
        source_dir: Path,
    ) -> None:
        """Remote copy of a local-only file: attach the key instead of a second file."""
        await configure_remote()
        local = await _import_one(import_service, source_dir, "song.wav", b"same bytes")
        remote_store.objects["music/song_from_laptop.wav"] = b"same bytes"

        linked = await executor.download_object("music/song_from_laptop.wav", AssetClass.MUSIC)

        assert linked is not None
        assert linked.id == local.id
        assert linked.remote_key == "music/song_from_laptop.wav"
        music_files = list(Path(local.local_path).parent.iterdir())
        assert music_files == [Path(local.local_path)]

    async def test_missing_remote_object(
        self, executor: RemoteSyncExecutor, configure_remote: ConfigureRemote
    ) -> None:
        await configure_remote()

        with pytest.raises(RemoteOperationError):
            await executor.download_object("music/nope.wav", AssetClass.MUSIC)


class TestDelete:
    async def test_deletes_and_clears_mirror(
        self,
        executor: RemoteSyncExecutor,
        import_service: ImportService,
        remote_store: FakeRemoteStore,
        session_factory: async_sessionmaker[AsyncSession],
        configure_remote: ConfigureRemote,
        source_dir: Path,
    ) -> None:
        await configure_remote()
        entry = await _import_one(import_service, source_dir, "song.wav", b"abc")
        mirrored = await executor.upload_entry(entry.id)
        assert mirrored is not None and mirrored.remote_key is not None

        assert await executor.delete_object(mirrored.remote_key) is True

        assert remote_store.objects == {}
        stored = await _get(session_factory, entry.id)
        assert stored is not None and stored.remote_key is None

    async def test_absent_key_is_success(
        self, executor: RemoteSyncExecutor, configure_remote: ConfigureRemote
    ) -> None:
        await configure_remote()

        assert await executor.delete_object("music/already_gone.wav") is False


class TestExecute:
    async def test_dispatches_by_operation(
        self,
        executor: RemoteSyncExecutor,
        remote_store: FakeRemoteStore,
        configure_remote: ConfigureRemote,
    ) -> None:
        await configure_remote()
        remote_store.objects["music/a.wav"] = b"a"

        await executor.execute(
            SyncQueueItem(
                operation=SyncOperation.DELETE,
                asset_class=AssetClass.MUSIC,
                remote_key="music/a.wav",
                id=1,
            )
        )

        assert remote_store.deletes == ["music/a.wav"]

    async def test_upload_without_entry_id_is_invalid(
        self, executor: RemoteSyncExecutor
    ) -> None:
        with pytest.raises(ValidationError):
            await executor.execute(
                SyncQueueItem(operation=SyncOperation.UPLOAD, asset_class=AssetClass.MUSIC, id=1)
            )
