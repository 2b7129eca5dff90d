"""Import pipeline: validate, hash, dedup, copy into the library, catalog.

Hey future me - the ORDER of steps per path is the whole point of this module:

1. extension allow-list            → else "failed"
2. compute metadata (content hash) → BEFORE any dedup check, dedup is by content
3. hash already cataloged?         → "duplicates", source untouched, nothing copied
4. asset class: override or filename heuristic
5. COPY (never move) into <library>/<asset_class>/<stem>_<epoch-ms><ext>
6. insert CatalogEntry (remote_key=None) - LAST step, so a failed copy leaves no row
7. progress event {current, total, filename}, in input order

Hashing for a batch runs concurrently through the worker pool, but every catalog decision
and every progress event happens in input order.

Watcher arbitration: the copy lands inside the watched tree, so the destination path is
CLAIMED before copying and released after the insert; the watcher skips claimed paths. The
UNIQUE content_hash column is the final arbiter if both still race to insert.
"""

import asyncio
import contextlib
import logging
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.app_settings_service import (
    DEFAULT_LIBRARY_PATH,
    AppSettingsService,
)
from soundvault.application.services.metadata_worker_pool import MetadataWorkerPool
from soundvault.application.services.remote_store_provider import RemoteStoreProvider
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.domain.entities import (
    AssetClass,
    CatalogEntry,
    FileMetadata,
    ImportResult,
    SyncOperation,
)
from soundvault.domain.ports.notification import (
    ImportProgressEvent,
    INotificationSink,
    LibraryUpdatedEvent,
)
from soundvault.domain.value_objects.audio_files import (
    asset_class_from_path,
    build_library_filename,
    detect_asset_class,
    is_audio_file,
)
from soundvault.infrastructure.persistence.repositories import CatalogRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


def ensure_library_tree(root: Path) -> Path:
    """Create the library root and one folder per asset class."""
    for asset_class in AssetClass:
        (root / asset_class.value).mkdir(parents=True, exist_ok=True)
    return root


class PathClaims:
    """Library paths currently being written by the app itself.

    Shared by the import pipeline, remote downloads and the watcher. All access
    happens on the event loop thread.
    """

    def __init__(self) -> None:
        self._paths: set[str] = set()

    def __contains__(self, path: object) -> bool:
        return str(path) in self._paths

    def claim(self, path: str | Path) -> bool:
        """Claim path; False if someone else already holds it."""
        key = str(path)
        if key in self._paths:
            return False
        self._paths.add(key)
        return True

    def release(self, path: str | Path) -> None:
        self._paths.discard(str(path))

    def claim_free(self, directory: Path, filename: str, keep_name: bool = False) -> Path:
        """Claim an unused path in directory for filename.

        New names follow <stem>_<epoch-ms><ext>; keep_name tries filename as-is first.
        """
        candidate = directory / (filename if keep_name else build_library_filename(filename))
        bump = 0
        while candidate.exists() or not self.claim(candidate):
            bump += 1
            stem = Path(build_library_filename(filename)).stem
            candidate = directory / f"{stem}-{bump}{Path(filename).suffix}"
        return candidate


class ImportService:
    """Imports audio files into the managed library."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        worker_pool: MetadataWorkerPool,
        notifier: INotificationSink,
        default_library_path: str = DEFAULT_LIBRARY_PATH,
        path_claims: PathClaims | None = None,
        sync_queue: SyncQueue | None = None,
        remote_provider: RemoteStoreProvider | None = None,
        max_concurrent_analysis: int = 2,
    ) -> None:
        """Initialize import service.

        Args:
            session_factory: Factory for short-lived DB sessions
            worker_pool: Hash/duration offload
            notifier: UI event sink
            default_library_path: Library root until the user picks one
            path_claims: Claims shared with the watcher and remote downloads
            sync_queue: When given (with remote_provider), new entries are queued for
                upload if auto sync is on and the remote is configured
            remote_provider: Tells whether the remote is configured
            max_concurrent_analysis: Hashing tasks in flight per batch
        """
        self._session_factory = session_factory
        self._worker_pool = worker_pool
        self._notifier = notifier
        self._default_library_path = default_library_path
        self.path_claims = path_claims or PathClaims()
        self._sync_queue = sync_queue
        self._remote_provider = remote_provider
        self._max_concurrent_analysis = max(1, max_concurrent_analysis)

    async def get_library_root(self) -> Path:
        """Current library root (``~`` expanded), sub-folders created."""
        async with self._session_factory() as session:
            root = await AppSettingsService(
                session, self._default_library_path
            ).get_library_root()
        return await asyncio.to_thread(ensure_library_tree, root)

    # =========================================================================
    # USER IMPORT
    # =========================================================================

    async def import_files(
        self,
        paths: Sequence[str | Path],
        force_type: AssetClass | None = None,
        progress: ProgressCallback | None = None,
    ) -> ImportResult:
        """Import a batch of files. Never raises for a single bad file.

        Args:
            paths: Source files, anywhere on disk
            force_type: Asset class override for the whole batch
            progress: Optional callback(current, total, filename), called in input order

        Returns:
            ImportResult with success/failed/duplicates, each in input order
        """
        result = ImportResult()
        total = len(paths)
        if total == 0:
            return result

        library_root = await self.get_library_root()
        auto_upload = await self._auto_upload_enabled()

        # Dispatch hashing for every candidate up front; decisions below stay in order
        semaphore = asyncio.Semaphore(self._max_concurrent_analysis)
        analyses: dict[int, asyncio.Task[FileMetadata]] = {}
        for index, path in enumerate(paths):
            if is_audio_file(path):
                analyses[index] = asyncio.create_task(self._analyze(path, semaphore))

        try:
            for index, raw_path in enumerate(paths):
                source = Path(raw_path)
                entry = await self._import_one(
                    source, analyses.get(index), force_type, library_root, result
                )
                if entry is not None:
                    result.success.append(entry)
                    self._notifier.emit(LibraryUpdatedEvent(type="add", entry=entry))
                    if auto_upload:
                        await self._enqueue_upload(entry)

                current = index + 1
                self._notifier.emit(
                    ImportProgressEvent(current=current, total=total, filename=source.name)
                )
                if progress is not None:
                    progress(current, total, source.name)
        finally:
            for task in analyses.values():
                task.cancel()

        logger.info(
            f"Import finished: {len(result.success)} imported, "
            f"{len(result.duplicates)} duplicate(s), {len(result.failed)} failed"
        )
        return result

    async def _analyze(self, path: str | Path, semaphore: asyncio.Semaphore) -> FileMetadata:
        async with semaphore:
            return await self._worker_pool.compute_metadata(path)

    async def _import_one(
        self,
        source: Path,
        analysis: "asyncio.Task[FileMetadata] | None",
        force_type: AssetClass | None,
        library_root: Path,
        result: ImportResult,
    ) -> CatalogEntry | None:
        if analysis is None:
            logger.warning(f"Skipping unsupported file type: {source}")
            result.failed.append(str(source))
            return None

        try:
            metadata = await analysis
        except Exception as e:
            # OSError, MetadataTimeoutError, WorkerCrashedError: all isolated per path
            logger.warning(f"Could not analyze {source}: {e}")
            result.failed.append(str(source))
            return None

        async with self._session_factory() as session:
            existing = await CatalogRepository(session).get_by_hash(metadata.content_hash)
        if existing is not None:
            logger.info(f"Duplicate of {existing.filename}: {source}")
            result.duplicates.append(str(source))
            return None

        asset_class = force_type or detect_asset_class(source.name)
        destination = self.path_claims.claim_free(library_root / asset_class.value, source.name)
        try:
            try:
                await asyncio.to_thread(shutil.copy2, source, destination)
            except OSError as e:
                logger.warning(f"Could not copy {source} into the library: {e}")
                await asyncio.to_thread(self._remove_quietly, destination)
                result.failed.append(str(source))
                return None

            entry = CatalogEntry(
                filename=source.name,
                asset_class=asset_class,
                local_path=str(destination),
                content_hash=metadata.content_hash,
                duration_seconds=metadata.duration_seconds,
                size_bytes=metadata.size_bytes,
            )
            if not await self._insert(entry):
                await asyncio.to_thread(self._remove_quietly, destination)
                result.duplicates.append(str(source))
                return None
        finally:
            self.path_claims.release(destination)

        logger.info(f"Imported {source.name} as {asset_class.value}")
        return entry

    @staticmethod
    def _remove_quietly(path: Path) -> None:
        with contextlib.suppress(OSError):
            path.unlink(missing_ok=True)

    async def _insert(self, entry: CatalogEntry) -> bool:
        """Insert entry; False if its content hash won a race elsewhere."""
        async with self._session_factory() as session:
            try:
                await CatalogRepository(session).add(entry)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"{entry.filename} was cataloged concurrently, treating as duplicate")
                return False
        return True

    async def _auto_upload_enabled(self) -> bool:
        if self._sync_queue is None or self._remote_provider is None:
            return False
        async with self._session_factory() as session:
            library = await AppSettingsService(
                session, self._default_library_path
            ).get_library_settings()
        return library.auto_sync and await self._remote_provider.is_configured()

    async def _enqueue_upload(self, entry: CatalogEntry) -> None:
        if self._sync_queue is None:
            return
        await self._sync_queue.enqueue(SyncOperation.UPLOAD, entry.id, entry.asset_class)

    # =========================================================================
    # WATCHER INGEST
    # =========================================================================

    async def ingest_library_file(self, path: str | Path) -> CatalogEntry | None:
        """Catalog a file that appeared inside the library tree (no copy).

        Runs the hash → dedup → insert part of the pipeline. The asset class comes from
        the parent folder name, falling back to the filename heuristic.

        Returns:
            The new entry, or None if the file was skipped (claimed, unsupported,
            already cataloged, duplicate content or unreadable)
        """
        file_path = Path(path)
        if not is_audio_file(file_path) or not self.path_claims.claim(file_path):
            return None

        try:
            async with self._session_factory() as session:
                known = await CatalogRepository(session).get_by_local_path(str(file_path))
            if known is not None:
                return None

            try:
                metadata = await self._worker_pool.compute_metadata(file_path)
            except Exception as e:
                logger.warning(f"Could not analyze new library file {file_path}: {e}")
                return None

            async with self._session_factory() as session:
                existing = await CatalogRepository(session).get_by_hash(metadata.content_hash)
            if existing is not None:
                logger.info(
                    f"New library file {file_path.name} duplicates {existing.filename}, not cataloged"
                )
                return None

            entry = CatalogEntry(
                filename=file_path.name,
                asset_class=asset_class_from_path(file_path),
                local_path=str(file_path),
                content_hash=metadata.content_hash,
                duration_seconds=metadata.duration_seconds,
                size_bytes=metadata.size_bytes,
            )
            if not await self._insert(entry):
                return None
        finally:
            self.path_claims.release(file_path)

        logger.info(f"Cataloged new library file {file_path.name} ({entry.asset_class.value})")
        self._notifier.emit(LibraryUpdatedEvent(type="add", entry=entry))
        if await self._auto_upload_enabled():
            await self._enqueue_upload(entry)
        return entry
