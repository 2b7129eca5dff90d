"""Catalog operations behind the library screen.

List, edit, favorite, delete, stats and "clear everything". Deleting a mirrored entry also
queues a remote delete so the mirror doesn't resurrect the file on the next sync.
"""

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.sync_queue import SyncQueue
from soundvault.domain.entities import (
    AssetClass,
    CatalogEntry,
    LibraryStats,
    SyncOperation,
)
from soundvault.domain.exceptions import EntityNotFoundException, ValidationError
from soundvault.infrastructure.persistence.repositories import CatalogRepository

logger = logging.getLogger(__name__)

# Fields the user may edit. Everything else is derived or owned by sync.
EDITABLE_FIELDS = frozenset({"favorite", "tags", "bpm", "asset_class"})


def _remove_file(path: str) -> bool:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    return True


class LibraryService:
    """Catalog queries and user edits."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sync_queue: SyncQueue | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._sync_queue = sync_queue

    async def list_entries(
        self,
        asset_class: AssetClass | None = None,
        favorite: bool | None = None,
        search: str | None = None,
        mirrored: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CatalogEntry]:
        async with self._session_factory() as session:
            return await CatalogRepository(session).list_entries(
                asset_class=asset_class,
                favorite=favorite,
                search=search,
                mirrored=mirrored,
                limit=limit,
                offset=offset,
            )

    async def get_entry(self, entry_id: str) -> CatalogEntry:
        """Raises EntityNotFoundException if the entry doesn't exist."""
        async with self._session_factory() as session:
            entry = await CatalogRepository(session).get(entry_id)
        if entry is None:
            raise EntityNotFoundException("CatalogEntry", entry_id)
        return entry

    async def update_entry(self, entry_id: str, changes: dict[str, Any]) -> CatalogEntry:
        """Apply user edits.

        Changing asset_class is an explicit re-classification: the file is NOT moved
        and the remote key is kept.

        Raises:
            EntityNotFoundException: Unknown entry
            ValidationError: Unknown or invalid field
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

        async with self._session_factory() as session:
            repo = CatalogRepository(session)
            entry = await repo.get(entry_id)
            if entry is None:
                raise EntityNotFoundException("CatalogEntry", entry_id)

            if "favorite" in changes:
                entry.favorite = bool(changes["favorite"])
            if "tags" in changes:
                tags = changes["tags"]
                if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                    raise ValidationError("tags must be a list of strings")
                entry.tags = [t.strip() for t in tags if t.strip()]
            if "bpm" in changes:
                bpm = changes["bpm"]
                if bpm is not None and (not isinstance(bpm, int | float) or bpm <= 0):
                    raise ValidationError("bpm must be a positive number")
                entry.bpm = float(bpm) if bpm is not None else None
            if "asset_class" in changes:
                try:
                    entry.asset_class = AssetClass(changes["asset_class"])
                except ValueError as e:
                    raise ValidationError(f"Unknown asset class: {changes['asset_class']}") from e

            entry.touch()
            await repo.update(entry)
            await session.commit()
        return entry

    async def toggle_favorite(self, entry_id: str) -> CatalogEntry:
        entry = await self.get_entry(entry_id)
        return await self.update_entry(entry_id, {"favorite": not entry.favorite})

    async def delete_entry(
        self, entry_id: str, delete_file: bool = True, delete_remote: bool = True
    ) -> bool:
        """Remove an entry from the catalog.

        Args:
            entry_id: Entry to remove
            delete_file: Also delete the library file from disk
            delete_remote: Queue a remote delete when the entry is mirrored

        Returns:
            True if a remote delete was queued
        """
        async with self._session_factory() as session:
            repo = CatalogRepository(session)
            entry = await repo.get(entry_id)
            if entry is None:
                raise EntityNotFoundException("CatalogEntry", entry_id)
            await repo.delete(entry_id)
            await session.commit()

        if delete_file:
            removed = await asyncio.to_thread(_remove_file, entry.local_path)
            if not removed:
                logger.info(f"Library file already gone: {entry.local_path}")

        queued = False
        if delete_remote and entry.remote_key and self._sync_queue is not None:
            await self._sync_queue.enqueue(
                SyncOperation.DELETE, entry.remote_key, entry.asset_class
            )
            queued = True

        logger.info(f"Deleted {entry.filename} from the library")
        return queued

    async def get_stats(self) -> LibraryStats:
        async with self._session_factory() as session:
            repo = CatalogRepository(session)
            counts = await repo.count_by_class()
            return LibraryStats(
                music_count=counts[AssetClass.MUSIC],
                sfx_count=counts[AssetClass.SFX],
                total_size_bytes=await repo.total_size(),
                mirrored_count=await repo.count_mirrored(),
                favorite_count=await repo.count_favorites(),
            )

    async def clear_library(self) -> int:
        """Delete every managed file and catalog row. Remote objects are kept.

        Returns:
            Number of catalog entries removed
        """
        async with self._session_factory() as session:
            repo = CatalogRepository(session)
            paths = await repo.list_local_paths()
            count = await repo.delete_all()
            await session.commit()

        def _remove_all() -> None:
            for path in paths:
                with contextlib.suppress(OSError):
                    Path(path).unlink(missing_ok=True)

        await asyncio.to_thread(_remove_all)
        logger.warning(f"Library cleared: {count} entries removed")
        return count
