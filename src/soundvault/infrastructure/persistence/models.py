"""SQLAlchemy ORM models for SoundVault."""

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import JSON, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! UTC datetimes come back naive.
# ALWAYS run DB datetimes through this before comparing with datetime.now(UTC), or you
# get "can't compare offset-naive and offset-aware datetimes".
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Listen up, content_hash is UNIQUE - that's the dedup invariant enforced by the DB itself,
# so two racing writers (import + watcher) can't both win. local_path is UNIQUE too: one
# entry per physical file. remote_key is indexed but NOT unique; reconciliation only needs
# fast "which keys do we know" lookups.
class CatalogEntryModel(Base):
    """SQLAlchemy model for CatalogEntry."""

    __tablename__ = "catalog_entries"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    # 'music' or 'sfx' (plain string, not DB enum - SQLite compatibility)
    asset_class: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    local_path: Mapped[str] = mapped_column(String(2048), nullable=False, unique=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    bpm: Mapped[float | None] = mapped_column(Float, nullable=True)
    favorite: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    remote_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    remote_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("ix_catalog_entries_remote_key", "remote_key"),
        Index("ix_catalog_entries_created_at", "created_at"),
    )


# Hey future me - this is the durable offline queue! Integer autoincrement id gives us the
# FIFO tie-break when two rows share created_at. entry_id is a plain column (no FK):
# delete items outlive their catalog row. locked_by/locked_at make
# "processing" a lease: a crashed consumer's rows become claimable again after
# sync.lease_timeout_seconds.
class SyncQueueModel(Base):
    """Persistent remote sync operation."""

    __tablename__ = "sync_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # upload, download, delete
    operation: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    remote_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    asset_class: Mapped[str] = mapped_column(String(10), nullable=False)
    # pending, processing, failed
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("ix_sync_queue_status_next_retry", "status", "next_retry_at"),
        Index("ix_sync_queue_entry_id", "entry_id"),
        Index("ix_sync_queue_remote_key", "remote_key"),
    )


class AppSettingsModel(Base):
    """Runtime settings and secrets stored in DB.

    Key-value store for user-editable configuration. Unlike env vars, these can be
    changed from the UI without a restart.

    Example keys:
    - 'library.local_library_path' (string)
    - 'sync.auto_sync' (boolean)
    - 'remote-api-key' (category 'secret')
    """

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    # 'string', 'boolean', 'integer', 'datetime'
    value_type: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="string", default="string"
    )
    category: Mapped[str] = mapped_column(
        String(50), nullable=False, server_default="general", default="general"
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (Index("ix_app_settings_category", "category"),)
