"""Tests for the import pipeline and the watcher ingest path."""

import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.app_settings_service import AppSettingsService
from soundvault.application.services.file_analysis import compute_file_hash
from soundvault.application.services.import_service import ImportService, PathClaims
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.domain.entities import AssetClass, SyncOperation
from soundvault.infrastructure.persistence.repositories import CatalogRepository
from tests.conftest import RecordingSink, write_audio


async def _catalog_size(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        return len(await CatalogRepository(session).list_entries())


class TestImportFiles:
    """Tests for ImportService.import_files()."""

    async def test_copies_into_class_folder_and_catalogs(
        self,
        import_service: ImportService,
        source_dir: Path,
        library_root: Path,
    ) -> None:
        source = write_audio(source_dir / "song.wav", b"RIFF-song-bytes")

        result = await import_service.import_files([str(source)])

        assert result.failed == []
        assert result.duplicates == []
        [entry] = result.success
        assert entry.filename == "song.wav"
        assert entry.asset_class == AssetClass.MUSIC
        assert entry.content_hash == compute_file_hash(source)
        assert entry.size_bytes == len(b"RIFF-song-bytes")
        assert entry.remote_key is None

        copied = Path(entry.local_path)
        assert copied.parent == (library_root / "music").resolve()
        assert copied.name.startswith("song_") and copied.suffix == ".wav"
        assert copied.read_bytes() == b"RIFF-song-bytes"
        # Copy, never move
        assert source.exists()

    async def test_sfx_heuristic_and_force_type(
        self, import_service: ImportService, source_dir: Path
    ) -> None:
        whoosh = write_audio(source_dir / "door_whoosh.wav", b"whoosh-bytes")
        song = write_audio(source_dir / "song.mp3", b"song-bytes")

        detected = await import_service.import_files([whoosh])
        forced = await import_service.import_files([song], force_type=AssetClass.SFX)

        assert detected.success[0].asset_class == AssetClass.SFX
        assert forced.success[0].asset_class == AssetClass.SFX
        assert Path(forced.success[0].local_path).parent.name == "sfx"

    async def test_duplicate_content_is_not_copied(
        self,
        import_service: ImportService,
        session_factory: async_sessionmaker[AsyncSession],
        source_dir: Path,
        library_root: Path,
    ) -> None:
        """Dedup is by content: same bytes under another name is still a duplicate."""
        original = write_audio(source_dir / "take_one.wav", b"identical")
        copy = write_audio(source_dir / "take_two.wav", b"identical")

        await import_service.import_files([original])
        result = await import_service.import_files([copy])

        assert result.success == []
        assert result.duplicates == [str(copy)]
        assert await _catalog_size(session_factory) == 1
        assert len(list((library_root / "music").iterdir())) == 1

    async def test_duplicates_within_one_batch(
        self, import_service: ImportService, source_dir: Path
    ) -> None:
        first = write_audio(source_dir / "a.wav", b"same")
        second = write_audio(source_dir / "b.wav", b"same")

        result = await import_service.import_files([first, second])

        assert [e.filename for e in result.success] == ["a.wav"]
        assert result.duplicates == [str(second)]

    async def test_bad_paths_fail_without_aborting_batch(
        self,
        import_service: ImportService,
        session_factory: async_sessionmaker[AsyncSession],
        source_dir: Path,
    ) -> None:
        notes = write_audio(source_dir / "notes.txt", b"not audio")
        missing = source_dir / "gone.wav"
        good = write_audio(source_dir / "song.wav", b"fine")

        result = await import_service.import_files([notes, missing, good])

        assert result.failed == [str(notes), str(missing)]
        assert [e.filename for e in result.success] == ["song.wav"]
        assert await _catalog_size(session_factory) == 1

    async def test_failed_copy_leaves_nothing_behind(
        self,
        import_service: ImportService,
        session_factory: async_sessionmaker[AsyncSession],
        source_dir: Path,
        library_root: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Disk full halfway through the copy: failed, not cataloged, partial file removed."""
        source = write_audio(source_dir / "song.wav", b"hashed-fine")

        def copy_then_fail(src: Path, dst: Path) -> None:
            Path(dst).write_bytes(b"hash")
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(shutil, "copy2", copy_then_fail)

        result = await import_service.import_files([source])

        assert result.failed == [str(source)]
        assert result.success == []
        assert await _catalog_size(session_factory) == 0
        assert list((library_root / "music").iterdir()) == []
        assert source.exists()

    async def test_progress_in_input_order(
        self, import_service: ImportService, sink: RecordingSink, source_dir: Path
    ) -> None:
        paths = [
            write_audio(source_dir / "one.wav", b"1" * 5000),
            source_dir / "missing.wav",
            write_audio(source_dir / "three.wav", b"3"),
        ]
        seen: list[tuple[int, int, str]] = []

        await import_service.import_files(
            paths, progress=lambda current, total, name: seen.append((current, total, name))
        )

        expected = [(1, 3, "one.wav"), (2, 3, "missing.wav"), (3, 3, "three.wav")]
        assert seen == expected
        events = sink.named("import-progress")
        assert [(e.current, e.total, e.filename) for e in events] == expected
        added = sink.named("library-updated")
        assert [e.entry.filename for e in added if e.entry] == ["one.wav", "three.wav"]

    async def test_empty_batch(self, import_service: ImportService) -> None:
        result = await import_service.import_files([])

        assert result.success == [] and result.failed == [] and result.duplicates == []

    async def test_no_upload_queued_without_auto_sync(
        self,
        import_service: ImportService,
        sync_queue: SyncQueue,
        configure_remote: Callable[[], Awaitable[None]],
        source_dir: Path,
    ) -> None:
        await configure_remote()

        await import_service.import_files([write_audio(source_dir / "song.wav", b"x")])

        assert (await sync_queue.get_stats()).total == 0

    async def test_auto_sync_queues_upload(
        self,
        import_service: ImportService,
        sync_queue: SyncQueue,
        session_factory: async_sessionmaker[AsyncSession],
        configure_remote: Callable[[], Awaitable[None]],
        source_dir: Path,
    ) -> None:
        await configure_remote()
        async with session_factory() as session:
            await AppSettingsService(session).update_library_settings({"auto_sync": True})
            await session.commit()

        result = await import_service.import_files(
            [write_audio(source_dir / "song.wav", b"x")]
        )

        [item] = await sync_queue.list_items()
        assert item.operation == SyncOperation.UPLOAD
        assert item.entry_id == result.success[0].id


class TestIngestLibraryFile:
    """Tests for the watcher path (file already inside the library)."""

    async def test_catalogs_in_place(
        self, import_service: ImportService, sink: RecordingSink
    ) -> None:
        root = await import_service.get_library_root()
        path = write_audio(root / "sfx" / "calm_song.wav", b"dropped-in")

        entry = await import_service.ingest_library_file(path)

        assert entry is not None
        # Folder beats filename heuristic
        assert entry.asset_class == AssetClass.SFX
        assert entry.local_path == str(path)
        assert [e.type for e in sink.named("library-updated")] == ["add"]

    async def test_known_path_is_skipped(self, import_service: ImportService) -> None:
        root = await import_service.get_library_root()
        path = write_audio(root / "music" / "song.wav", b"once")

        assert await import_service.ingest_library_file(path) is not None
        assert await import_service.ingest_library_file(path) is None

    async def test_duplicate_content_is_skipped(
        self, import_service: ImportService, source_dir: Path
    ) -> None:
        await import_service.import_files([write_audio(source_dir / "song.wav", b"same")])
        root = await import_service.get_library_root()
        path = write_audio(root / "music" / "copy_of_song.wav", b"same")

        assert await import_service.ingest_library_file(path) is None

    async def test_claimed_path_is_skipped(self, import_service: ImportService) -> None:
        """Files the app is writing itself (import copy, download) belong to that writer."""
        root = await import_service.get_library_root()
        path = write_audio(root / "music" / "in_flight.wav", b"partial")
        import_service.path_claims.claim(path)

        assert await import_service.ingest_library_file(path) is None

    async def test_non_audio_is_skipped(self, import_service: ImportService) -> None:
        root = await import_service.get_library_root()
        path = write_audio(root / "music" / "readme.txt", b"hello")

        assert await import_service.ingest_library_file(path) is None


class TestPathClaims:
    def test_claim_is_exclusive(self, tmp_path: Path) -> None:
        claims = PathClaims()

        assert claims.claim(tmp_path / "a.wav")
        assert not claims.claim(tmp_path / "a.wav")
        assert (tmp_path / "a.wav") in claims

        claims.release(tmp_path / "a.wav")
        assert (tmp_path / "a.wav") not in claims

    def test_claim_free_skips_existing_files(self, tmp_path: Path) -> None:
        claims = PathClaims()
        (tmp_path / "kick.wav").write_bytes(b"taken")

        path = claims.claim_free(tmp_path, "kick.wav", keep_name=True)

        assert path != tmp_path / "kick.wav"
        assert path.suffix == ".wav"
        assert path in claims
