"""Executes single remote operations and writes the results back to the catalog.

Hey future me - both the queue worker and the reconciliation engine go through here, so an
upload or download behaves the same no matter who triggered it.

Every operation is safe to replay (the queue is at-least-once):
- upload_entry: overwrites the object under the same key
- download_object: no-op if some entry already carries the key
- delete_object: an already-absent key counts as success

No DB session is held while a remote call is in flight: read → close → remote call →
open a fresh session → write back.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path, PurePosixPath

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.import_service import PathClaims
from soundvault.application.services.metadata_worker_pool import MetadataWorkerPool
from soundvault.application.services.remote_store_provider import RemoteStoreProvider
from soundvault.domain.entities import AssetClass, CatalogEntry, SyncOperation, SyncQueueItem
from soundvault.domain.exceptions import ValidationError
from soundvault.domain.ports.notification import INotificationSink, LibraryUpdatedEvent
from soundvault.domain.value_objects.audio_files import (
    content_type_for,
    remote_key_for,
)
from soundvault.infrastructure.persistence.repositories import CatalogRepository

logger = logging.getLogger(__name__)

LibraryRootProvider = Callable[[], Awaitable[Path]]


class RemoteSyncExecutor:
    """Upload / download / delete against the remote store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        remote_provider: RemoteStoreProvider,
        worker_pool: MetadataWorkerPool,
        notifier: INotificationSink,
        library_root: LibraryRootProvider,
        path_claims: PathClaims,
    ) -> None:
        """Initialize the executor.

        Args:
            session_factory: Factory for short-lived DB sessions
            remote_provider: Source of the configured adapter
            worker_pool: Metadata for downloaded files
            notifier: UI event sink
            library_root: Async callable returning the current library root
            path_claims: Claims shared with the watcher
        """
        self._session_factory = session_factory
        self._remote_provider = remote_provider
        self._worker_pool = worker_pool
        self._notifier = notifier
        self._library_root = library_root
        self._path_claims = path_claims

    async def execute(self, item: SyncQueueItem) -> None:
        """Run one queue item. Raises on failure so the caller can mark_failed."""
        if item.operation == SyncOperation.UPLOAD:
            if not item.entry_id:
                raise ValidationError(f"Upload item {item.id} has no entry id")
            await self.upload_entry(item.entry_id)
        elif item.operation == SyncOperation.DOWNLOAD:
            if not item.remote_key:
                raise ValidationError(f"Download item {item.id} has no remote key")
            await self.download_object(item.remote_key, item.asset_class)
        else:
            if not item.remote_key:
                raise ValidationError(f"Delete item {item.id} has no remote key")
            await self.delete_object(item.remote_key)

    # =========================================================================
    # UPLOAD
    # =========================================================================

    async def upload_entry(self, entry_id: str) -> CatalogEntry | None:
        """Upload an entry's file and record remote_key/remote_url on it.

        Returns:
            The updated entry, or None if the entry no longer exists

        Raises:
            RemoteUnavailableError: Remote not configured/unreachable
            RemoteOperationError: Upload rejected
            OSError: Library file unreadable
        """
        async with self._session_factory() as session:
            entry = await CatalogRepository(session).get(entry_id)
        if entry is None:
            logger.info(f"Upload skipped, entry {entry_id} no longer exists")
            return None

        store = await self._remote_provider.get_store()
        local_path = Path(entry.local_path)
        data = await asyncio.to_thread(local_path.read_bytes)
        key = remote_key_for(entry.asset_class, local_path.name)
        async with self._session_factory() as session:
            holders = await CatalogRepository(session).list_by_remote_key(key)
        for holder in holders:
            if holder.id != entry_id:
                # Same filename in two subfolders of one class folder maps to one key
                logger.warning(
                    f"Remote key {key} is already held by {holder.filename} ({holder.id}), "
                    f"upload of {entry.filename} overwrites that object"
                )
        ref = await store.upload(data, key, content_type_for(local_path))

        async with self._session_factory() as session:
            repo = CatalogRepository(session)
            current = await repo.get(entry_id)
            if current is None:
                logger.info(f"Entry {entry_id} was deleted during its upload to {key}")
                return None
            current.mark_mirrored(ref.key, ref.url)
            await repo.update(current)
            await session.commit()

        logger.info(f"Uploaded {current.filename} to {ref.key}")
        return current

    # =========================================================================
    # DOWNLOAD
    # =========================================================================

    async def download_object(
        self, remote_key: str, asset_class: AssetClass
    ) -> CatalogEntry | None:
        """Download a remote-only object into the library and catalog it.

        The new entry carries remote_key from the moment it's inserted, so reconciliation
        never offers it back as an upload. If the bytes turn out to duplicate an existing
        entry, the download is discarded and the key is attached to that entry instead
        (when it has none).

        Returns:
            The entry now carrying remote_key, or None if the content matched an entry
            mirrored under a different key
        """
        async with self._session_factory() as session:
            known = await CatalogRepository(session).get_by_remote_key(remote_key)
        if known is not None:
            logger.debug(f"{remote_key} already cataloged as {known.filename}")
            return known

        store = await self._remote_provider.get_store()
        data = await store.download(remote_key)

        directory = (await self._library_root()) / asset_class.value
        destination = self._path_claims.claim_free(
            directory, PurePosixPath(remote_key).name, keep_name=True
        )
        try:
            await asyncio.to_thread(self._write_file, destination, data)
            try:
                metadata = await self._worker_pool.compute_metadata(destination)
            except Exception:
                await asyncio.to_thread(self._remove_quietly, destination)
                raise

            async with self._session_factory() as session:
                existing = await CatalogRepository(session).get_by_hash(metadata.content_hash)
            if existing is not None:
                await asyncio.to_thread(self._remove_quietly, destination)
                return await self._attach_key(existing, remote_key, store.public_url(remote_key))

            entry = CatalogEntry(
                filename=destination.name,
                asset_class=asset_class,
                local_path=str(destination),
                content_hash=metadata.content_hash,
                duration_seconds=metadata.duration_seconds,
                size_bytes=metadata.size_bytes,
                remote_key=remote_key,
                remote_url=store.public_url(remote_key),
            )
            async with self._session_factory() as session:
                try:
                    await CatalogRepository(session).add(entry)
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    await asyncio.to_thread(self._remove_quietly, destination)
                    existing = await CatalogRepository(session).get_by_hash(
                        metadata.content_hash
                    )
                    if existing is None:
                        raise
                    return await self._attach_key(
                        existing, remote_key, store.public_url(remote_key)
                    )
        finally:
            self._path_claims.release(destination)

        logger.info(f"Downloaded {remote_key} into the library")
        self._notifier.emit(LibraryUpdatedEvent(type="add", entry=entry))
        return entry

    async def _attach_key(
        self, existing: CatalogEntry, remote_key: str, remote_url: str
    ) -> CatalogEntry | None:
        if existing.is_mirrored:
            logger.info(
                f"{remote_key} has the same content as {existing.filename} "
                f"(mirrored as {existing.remote_key}), download discarded"
            )
            return None
        async with self._session_factory() as session:
            repo = CatalogRepository(session)
            current = await repo.get(existing.id)
            if current is None:
                return None
            current.mark_mirrored(remote_key, remote_url)
            await repo.update(current)
            await session.commit()
        logger.info(f"{remote_key} matches local {current.filename}, linked without copy")
        return current

    @staticmethod
    def _write_file(destination: Path, data: bytes) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)

    @staticmethod
    def _remove_quietly(path: Path) -> None:
        with contextlib.suppress(OSError):
            path.unlink(missing_ok=True)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_object(self, remote_key: str) -> bool:
        """Delete a remote object and forget the key locally.

        Returns:
            False if the object was already absent (still a success)
        """
        store = await self._remote_provider.get_store()
        removed = await store.delete(remote_key)
        if not removed:
            logger.info(f"Remote object {remote_key} already absent")

        async with self._session_factory() as session:
            repo = CatalogRepository(session)
            for entry in await repo.list_by_remote_key(remote_key):
                entry.clear_mirror()
                await repo.update(entry)
            await session.commit()
        return removed
