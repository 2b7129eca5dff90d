"""Repository implementations for data access."""

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import String, and_, cast, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from soundvault.domain.entities import (
    AssetClass,
    CatalogEntry,
    SyncOperation,
    SyncQueueItem,
    SyncStatus,
)
from soundvault.domain.exceptions import EntityNotFoundException
from soundvault.infrastructure.persistence.models import (
    AppSettingsModel,
    CatalogEntryModel,
    SyncQueueModel,
    ensure_utc_aware,
)


# Hey future me, CatalogRepository is session-scoped like every repository here: the caller
# opens a short session, does its reads/writes and commits. NEVER keep one of these around
# across an awaited remote call - that would hold a SQLite write lock for the whole upload.
class CatalogRepository:
    """SQLAlchemy repository for catalog entries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    @staticmethod
    def _model_to_entity(model: CatalogEntryModel) -> CatalogEntry:
        return CatalogEntry(
            id=model.id,
            filename=model.filename,
            asset_class=AssetClass(model.asset_class),
            local_path=model.local_path,
            content_hash=model.content_hash,
            duration_seconds=model.duration_seconds or 0.0,
            size_bytes=model.size_bytes or 0,
            tags=list(model.tags or []),
            bpm=model.bpm,
            favorite=bool(model.favorite),
            remote_key=model.remote_key,
            remote_url=model.remote_url,
            created_at=ensure_utc_aware(model.created_at),
            updated_at=ensure_utc_aware(model.updated_at),
        )

    async def add(self, entry: CatalogEntry) -> None:
        """Insert a new entry.

        Flushes immediately so a duplicate content_hash/local_path raises IntegrityError
        here instead of at commit time, where the caller can still classify it.
        """
        model = CatalogEntryModel(
            id=entry.id,
            filename=entry.filename,
            asset_class=entry.asset_class.value,
            local_path=entry.local_path,
            content_hash=entry.content_hash,
            duration_seconds=entry.duration_seconds,
            size_bytes=entry.size_bytes,
            tags=list(entry.tags),
            bpm=entry.bpm,
            favorite=entry.favorite,
            remote_key=entry.remote_key,
            remote_url=entry.remote_url,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )
        self.session.add(model)
        await self.session.flush()

    async def update(self, entry: CatalogEntry) -> None:
        """Persist every mutable field of an existing entry."""
        model = await self.session.get(CatalogEntryModel, entry.id)
        if model is None:
            raise EntityNotFoundException("CatalogEntry", entry.id)

        model.filename = entry.filename
        model.asset_class = entry.asset_class.value
        model.local_path = entry.local_path
        model.duration_seconds = entry.duration_seconds
        model.size_bytes = entry.size_bytes
        model.tags = list(entry.tags)
        model.bpm = entry.bpm
        model.favorite = entry.favorite
        model.remote_key = entry.remote_key
        model.remote_url = entry.remote_url
        model.updated_at = entry.updated_at

    async def delete(self, entry_id: str) -> None:
        """Delete an entry by id."""
        stmt = delete(CatalogEntryModel).where(CatalogEntryModel.id == entry_id)
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("CatalogEntry", entry_id)

    async def delete_all(self) -> int:
        """Delete every entry. Returns the number of rows removed."""
        result = await self.session.execute(delete(CatalogEntryModel))
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def get(self, entry_id: str) -> CatalogEntry | None:
        model = await self.session.get(CatalogEntryModel, entry_id)
        return self._model_to_entity(model) if model else None

    async def _get_one(self, *criteria: Any) -> CatalogEntry | None:
        stmt = select(CatalogEntryModel).where(*criteria).limit(1)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def get_by_hash(self, content_hash: str) -> CatalogEntry | None:
        return await self._get_one(CatalogEntryModel.content_hash == content_hash)

    async def get_by_local_path(self, local_path: str) -> CatalogEntry | None:
        return await self._get_one(CatalogEntryModel.local_path == local_path)

    async def get_by_remote_key(self, remote_key: str) -> CatalogEntry | None:
        return await self._get_one(CatalogEntryModel.remote_key == remote_key)

    async def list_by_remote_key(self, remote_key: str) -> list[CatalogEntry]:
        """All entries pointing at remote_key (the column is not unique)."""
        stmt = select(CatalogEntryModel).where(CatalogEntryModel.remote_key == remote_key)
        result = await self.session.execute(stmt)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def list_entries(
        self,
        asset_class: AssetClass | None = None,
        favorite: bool | None = None,
        search: str | None = None,
        mirrored: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CatalogEntry]:
        """List entries, newest first, with optional filters.

        Args:
            asset_class: Only entries of this class
            favorite: Only favorites (True) or non-favorites (False)
            search: Case-insensitive substring of filename or tags
            mirrored: Only entries with (True) or without (False) a remote key
            limit: Max rows (None = all)
            offset: Rows to skip

        Returns:
            Matching entries
        """
        stmt = select(CatalogEntryModel)
        if asset_class is not None:
            stmt = stmt.where(CatalogEntryModel.asset_class == asset_class.value)
        if favorite is not None:
            stmt = stmt.where(CatalogEntryModel.favorite == favorite)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    CatalogEntryModel.filename.ilike(pattern),
                    cast(CatalogEntryModel.tags, String).ilike(pattern),
                )
            )
        if mirrored is True:
            stmt = stmt.where(CatalogEntryModel.remote_key.is_not(None))
        elif mirrored is False:
            stmt = stmt.where(CatalogEntryModel.remote_key.is_(None))
        stmt = stmt.order_by(
            CatalogEntryModel.created_at.desc(), CatalogEntryModel.id
        ).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def list_unmirrored(self) -> list[CatalogEntry]:
        """Entries without a remote key, oldest first (upload candidates)."""
        stmt = (
            select(CatalogEntryModel)
            .where(CatalogEntryModel.remote_key.is_(None))
            .order_by(CatalogEntryModel.created_at, CatalogEntryModel.id)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def known_remote_keys(self) -> set[str]:
        """Every non-null remote key in the catalog."""
        stmt = select(CatalogEntryModel.remote_key).where(
            CatalogEntryModel.remote_key.is_not(None)
        )
        result = await self.session.execute(stmt)
        return {key for key in result.scalars().all() if key}

    async def list_local_paths(self) -> list[str]:
        stmt = select(CatalogEntryModel.local_path)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_class(self) -> dict[AssetClass, int]:
        stmt = select(CatalogEntryModel.asset_class, func.count()).group_by(
            CatalogEntryModel.asset_class
        )
        result = await self.session.execute(stmt)
        counts = dict.fromkeys(AssetClass, 0)
        for asset_class, count in result.all():
            counts[AssetClass(asset_class)] = count
        return counts

    async def total_size(self) -> int:
        stmt = select(func.coalesce(func.sum(CatalogEntryModel.size_bytes), 0))
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def count_mirrored(self) -> int:
        stmt = select(func.count()).where(CatalogEntryModel.remote_key.is_not(None))
        return int((await self.session.execute(stmt)).scalar_one())

    async def count_favorites(self) -> int:
        stmt = select(func.count()).where(CatalogEntryModel.favorite.is_(True))
        return int((await self.session.execute(stmt)).scalar_one())


# Listen up, SyncQueueRepository is pure data access - backoff math, lease timeouts and
# the clock live in the SyncQueue service. Every state transition that could race with
# another consumer is a compare-and-set UPDATE (WHERE id=? AND status=?) so a row is
# claimed by exactly one worker even with several consumers on the same DB file.
class SyncQueueRepository:
    """SQLAlchemy repository for sync queue items."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    @staticmethod
    def _model_to_entity(model: SyncQueueModel) -> SyncQueueItem:
        return SyncQueueItem(
            id=model.id,
            operation=SyncOperation(model.operation),
            entry_id=model.entry_id,
            remote_key=model.remote_key,
            asset_class=AssetClass(model.asset_class),
            status=SyncStatus(model.status),
            retry_count=model.retry_count,
            max_retries=model.max_retries,
            last_error=model.last_error,
            next_retry_at=ensure_utc_aware(model.next_retry_at)
            if model.next_retry_at
            else None,
            locked_by=model.locked_by,
            locked_at=ensure_utc_aware(model.locked_at) if model.locked_at else None,
            created_at=ensure_utc_aware(model.created_at),
            updated_at=ensure_utc_aware(model.updated_at),
        )

    async def add(self, item: SyncQueueItem) -> SyncQueueItem:
        """Insert an item and return it with its sequence id."""
        model = SyncQueueModel(
            operation=item.operation.value,
            entry_id=item.entry_id,
            remote_key=item.remote_key,
            asset_class=item.asset_class.value,
            status=item.status.value,
            retry_count=item.retry_count,
            max_retries=item.max_retries,
            last_error=item.last_error,
            next_retry_at=item.next_retry_at,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )
        self.session.add(model)
        await self.session.flush()
        return self._model_to_entity(model)

    async def get(self, item_id: int) -> SyncQueueItem | None:
        model = await self.session.get(SyncQueueModel, item_id)
        return self._model_to_entity(model) if model else None

    async def find_unfinished(
        self, operation: SyncOperation, correlation_id: str
    ) -> SyncQueueItem | None:
        """Find an equivalent item that will still run (pending, processing, retrying)."""
        correlation_column = (
            SyncQueueModel.entry_id
            if operation == SyncOperation.UPLOAD
            else SyncQueueModel.remote_key
        )
        stmt = (
            select(SyncQueueModel)
            .where(
                SyncQueueModel.operation == operation.value,
                correlation_column == correlation_id,
                or_(
                    SyncQueueModel.status.in_(
                        [SyncStatus.PENDING.value, SyncStatus.PROCESSING.value]
                    ),
                    and_(
                        SyncQueueModel.status == SyncStatus.FAILED.value,
                        SyncQueueModel.retry_count < SyncQueueModel.max_retries,
                    ),
                ),
            )
            .order_by(SyncQueueModel.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def list_claimable(
        self, now: datetime, lease_cutoff: datetime, limit: int
    ) -> list[SyncQueueItem]:
        """Eligible items in FIFO order.

        Eligible: pending/failed under the retry cap whose next_retry_at is unset or
        elapsed, plus processing items whose lease started before lease_cutoff.
        """
        stmt = (
            select(SyncQueueModel)
            .where(
                or_(
                    and_(
                        SyncQueueModel.status.in_(
                            [SyncStatus.PENDING.value, SyncStatus.FAILED.value]
                        ),
                        SyncQueueModel.retry_count < SyncQueueModel.max_retries,
                        or_(
                            SyncQueueModel.next_retry_at.is_(None),
                            SyncQueueModel.next_retry_at <= now,
                        ),
                    ),
                    and_(
                        SyncQueueModel.status == SyncStatus.PROCESSING.value,
                        or_(
                            SyncQueueModel.locked_at.is_(None),
                            SyncQueueModel.locked_at <= lease_cutoff,
                        ),
                    ),
                )
            )
            .order_by(SyncQueueModel.created_at, SyncQueueModel.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def try_lock(
        self, item: SyncQueueItem, worker_id: str, now: datetime
    ) -> bool:
        """Compare-and-set the item to processing. False if someone else got it first."""
        criteria = [
            SyncQueueModel.id == item.id,
            SyncQueueModel.status == item.status.value,
        ]
        if item.locked_at is None:
            criteria.append(SyncQueueModel.locked_at.is_(None))
        else:
            criteria.append(SyncQueueModel.locked_at == item.locked_at)
        stmt = (
            update(SyncQueueModel)
            .where(*criteria)
            .values(
                status=SyncStatus.PROCESSING.value,
                locked_by=worker_id,
                locked_at=now,
                updated_at=now,
            )
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def save_failure(self, item: SyncQueueItem) -> None:
        """Persist retry bookkeeping after a failed attempt and release the lease."""
        stmt = (
            update(SyncQueueModel)
            .where(SyncQueueModel.id == item.id)
            .values(
                status=item.status.value,
                retry_count=item.retry_count,
                last_error=item.last_error,
                next_retry_at=item.next_retry_at,
                locked_by=None,
                locked_at=None,
                updated_at=item.updated_at,
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("SyncQueueItem", item.id)

    async def release(self, item_id: int, now: datetime) -> bool:
        """Hand a processing item back as pending, attempt not counted."""
        stmt = (
            update(SyncQueueModel)
            .where(
                SyncQueueModel.id == item_id,
                SyncQueueModel.status == SyncStatus.PROCESSING.value,
            )
            .values(
                status=SyncStatus.PENDING.value,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def delete(self, item_id: int) -> bool:
        stmt = delete(SyncQueueModel).where(SyncQueueModel.id == item_id)
        result = await self.session.execute(stmt)
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def reset_processing(self, now: datetime) -> int:
        """Move every processing row back to pending. Returns how many moved."""
        stmt = (
            update(SyncQueueModel)
            .where(SyncQueueModel.status == SyncStatus.PROCESSING.value)
            .values(
                status=SyncStatus.PENDING.value,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def list_items(self, status: SyncStatus | None = None) -> list[SyncQueueItem]:
        stmt = select(SyncQueueModel)
        if status is not None:
            stmt = stmt.where(SyncQueueModel.status == status.value)
        stmt = stmt.order_by(SyncQueueModel.created_at, SyncQueueModel.id)
        result = await self.session.execute(stmt)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def count_by_status(self) -> dict[str, int]:
        """Counts keyed by status, with failed split into 'retrying'/'permanently_failed'."""
        permanently_failed = and_(
            SyncQueueModel.status == SyncStatus.FAILED.value,
            SyncQueueModel.retry_count >= SyncQueueModel.max_retries,
        )
        stmt = select(
            func.count().filter(SyncQueueModel.status == SyncStatus.PENDING.value),
            func.count().filter(SyncQueueModel.status == SyncStatus.PROCESSING.value),
            func.count().filter(
                SyncQueueModel.status == SyncStatus.FAILED.value,
                SyncQueueModel.retry_count < SyncQueueModel.max_retries,
            ),
            func.count().filter(permanently_failed),
            func.count(),
        )
        pending, processing, retrying, failed, total = (
            await self.session.execute(stmt)
        ).one()
        return {
            "pending": pending,
            "processing": processing,
            "retrying": retrying,
            "permanently_failed": failed,
            "total": total,
        }

    async def delete_permanently_failed(self) -> int:
        stmt = delete(SyncQueueModel).where(
            SyncQueueModel.status == SyncStatus.FAILED.value,
            SyncQueueModel.retry_count >= SyncQueueModel.max_retries,
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def reset_permanently_failed(self, now: datetime) -> int:
        """Give permanently failed items a fresh set of retries."""
        stmt = (
            update(SyncQueueModel)
            .where(
                SyncQueueModel.status == SyncStatus.FAILED.value,
                SyncQueueModel.retry_count >= SyncQueueModel.max_retries,
            )
            .values(
                status=SyncStatus.PENDING.value,
                retry_count=0,
                next_retry_at=None,
                updated_at=now,
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]


class AppSettingsRepository:
    """Key-value access to the app_settings table."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get(self, key: str) -> AppSettingsModel | None:
        return await self.session.get(AppSettingsModel, key)

    async def upsert(
        self,
        key: str,
        value: str | None,
        value_type: str = "string",
        category: str = "general",
    ) -> None:
        model = await self.session.get(AppSettingsModel, key)
        if model is None:
            self.session.add(
                AppSettingsModel(
                    key=key, value=value, value_type=value_type, category=category
                )
            )
        else:
            model.value = value
            model.value_type = value_type
            model.category = category
        await self.session.flush()

    async def delete(self, key: str) -> bool:
        stmt = delete(AppSettingsModel).where(AppSettingsModel.key == key)
        result = await self.session.execute(stmt)
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def list_by_category(self, category: str) -> Sequence[AppSettingsModel]:
        stmt = select(AppSettingsModel).where(AppSettingsModel.category == category)
        result = await self.session.execute(stmt)
        return result.scalars().all()
