"""Reconciliation engine: diff the local catalog against the remote listing.

Hey future me - the ONLY identity shared by both sides is remote_key:

    upload candidates   = catalog entries with remote_key NULL
    download candidates = remote objects whose key no catalog entry carries

No filename or content-hash matching against the remote (it doesn't expose hashes). Two
files that end up under the same key would mask each other - known gap, left as a product
decision.

full_sync() runs uploads FIRST, then downloads. A downloaded entry gets its remote_key at
insert time, so it can never show up as an upload candidate in the same pass. Every item is
attempted; failures are logged and counted, never abort the batch.

Re-entrancy: a second full_sync() while one is running returns skipped=True right away.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.app_settings_service import AppSettingsService
from soundvault.application.services.remote_store_provider import RemoteStoreProvider
from soundvault.application.services.remote_sync_executor import RemoteSyncExecutor
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.domain.entities import (
    AssetClass,
    CatalogEntry,
    SyncOperation,
    SyncResult,
    SyncStatusSummary,
)
from soundvault.domain.exceptions import RemoteUnavailableError
from soundvault.domain.ports.notification import INotificationSink, SyncCompleteEvent
from soundvault.domain.ports.remote_store import IRemoteStore, RemoteObject
from soundvault.domain.value_objects.audio_files import asset_class_from_remote_key
from soundvault.infrastructure.persistence.repositories import CatalogRepository

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Brings local catalog and remote mirror toward parity."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        remote_provider: RemoteStoreProvider,
        executor: RemoteSyncExecutor,
        sync_queue: SyncQueue,
        notifier: INotificationSink,
    ) -> None:
        self._session_factory = session_factory
        self._remote_provider = remote_provider
        self._executor = executor
        self._sync_queue = sync_queue
        self._notifier = notifier
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def _list_remote(self, store: IRemoteStore) -> list[RemoteObject]:
        """Full remote listing across every asset-class prefix, all pages."""
        objects: list[RemoteObject] = []
        for asset_class in AssetClass:
            page_token: str | None = None
            while True:
                page = await store.list(asset_class.value, page_token)
                objects.extend(page.items)
                if not page.next_page_token:
                    break
                page_token = page.next_page_token
        return objects

    async def _plan(self) -> tuple[list[CatalogEntry], list[RemoteObject]]:
        """Upload and download candidates.

        Raises:
            RemoteUnavailableError: Remote not configured/unreachable
        """
        store = await self._remote_provider.get_store()
        remote_objects = await self._list_remote(store)

        async with self._session_factory() as session:
            repo = CatalogRepository(session)
            local_only = await repo.list_unmirrored()
            known_keys = await repo.known_remote_keys()

        seen: set[str] = set()
        remote_only: list[RemoteObject] = []
        for obj in remote_objects:
            if obj.key in known_keys or obj.key in seen:
                continue
            seen.add(obj.key)
            remote_only.append(obj)
        return local_only, remote_only

    async def compute_sync_status(self) -> SyncStatusSummary:
        """Count pending uploads and downloads without changing anything."""
        try:
            local_only, remote_only = await self._plan()
        except RemoteUnavailableError as e:
            async with self._session_factory() as session:
                upload_needed = len(await CatalogRepository(session).list_unmirrored())
            logger.info(f"Sync status without remote: {e.message}")
            return SyncStatusSummary(
                upload_needed=upload_needed, download_needed=0, configured=False
            )
        return SyncStatusSummary(
            upload_needed=len(local_only), download_needed=len(remote_only)
        )

    async def full_sync(self) -> SyncResult:
        """Upload every local-only entry, then download every remote-only object."""
        if self._running:
            logger.info("Sync already running, ignoring trigger")
            return SyncResult(skipped=True)

        self._running = True
        try:
            try:
                local_only, remote_only = await self._plan()
            except RemoteUnavailableError as e:
                logger.warning(f"Sync skipped: {e.message}")
                return SyncResult(configured=False)

            logger.info(
                f"Sync started: {len(local_only)} upload(s), {len(remote_only)} download(s)"
            )
            uploaded = downloaded = failed = 0

            for entry in local_only:
                try:
                    if await self._executor.upload_entry(entry.id) is not None:
                        uploaded += 1
                except Exception as e:
                    failed += 1
                    logger.error(f"Upload of {entry.filename} failed: {e}")

            for obj in remote_only:
                try:
                    entry = await self._executor.download_object(
                        obj.key, asset_class_from_remote_key(obj.key)
                    )
                    if entry is None:
                        logger.info(
                            f"Download of {obj.key} discarded, content already mirrored "
                            f"under another key"
                        )
                        continue
                    downloaded += 1
                except Exception as e:
                    failed += 1
                    logger.error(f"Download of {obj.key} failed: {e}")

            finished_at = datetime.now(UTC)
            async with self._session_factory() as session:
                await AppSettingsService(session).record_sync(finished_at)
                await session.commit()
            self._notifier.emit(
                SyncCompleteEvent(synced=uploaded + downloaded, time=finished_at)
            )
            logger.info(
                f"Sync finished: {uploaded} uploaded, {downloaded} downloaded, {failed} failed"
            )
            return SyncResult(uploaded=uploaded, downloaded=downloaded, failed=failed)
        finally:
            self._running = False

    async def schedule_sync(self) -> int:
        """Queue-backed variant of full_sync(): enqueue the delta, don't run it.

        Returns:
            Number of newly queued items (already queued ones don't count)

        Raises:
            RemoteUnavailableError: Remote not configured/unreachable
        """
        local_only, remote_only = await self._plan()
        queued = 0
        for entry in local_only:
            result = await self._sync_queue.enqueue(
                SyncOperation.UPLOAD, entry.id, entry.asset_class
            )
            queued += not result.already_queued
        for obj in remote_only:
            result = await self._sync_queue.enqueue(
                SyncOperation.DOWNLOAD, obj.key, asset_class_from_remote_key(obj.key)
            )
            queued += not result.already_queued
        logger.info(f"Scheduled {queued} sync operation(s)")
        return queued
