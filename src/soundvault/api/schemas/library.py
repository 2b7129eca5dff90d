"""API schemas for the library (catalog) endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from soundvault.domain.entities import (
    AssetClass,
    CatalogEntry,
    ImportResult,
    LibraryStats,
)


class CatalogEntryResponse(BaseModel):
    """One catalog entry."""

    id: str
    filename: str
    asset_class: AssetClass
    local_path: str
    content_hash: str
    duration_seconds: float
    size_bytes: int
    tags: list[str]
    bpm: float | None
    favorite: bool
    remote_key: str | None
    remote_url: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, entry: CatalogEntry) -> "CatalogEntryResponse":
        return cls(
            id=entry.id,
            filename=entry.filename,
            asset_class=entry.asset_class,
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


class ImportRequest(BaseModel):
    """Request schema for importing files from anywhere on disk."""

    paths: list[str] = Field(..., min_length=1, description="Absolute source file paths")
    force_type: AssetClass | None = Field(
        default=None, description="Asset class for the whole batch (skips the heuristic)"
    )


class ImportResponse(BaseModel):
    """Per-path outcome of an import batch, each list in input order."""

    success: list[CatalogEntryResponse]
    failed: list[str]
    duplicates: list[str]

    @classmethod
    def from_result(cls, result: ImportResult) -> "ImportResponse":
        return cls(
            success=[CatalogEntryResponse.from_entity(e) for e in result.success],
            failed=list(result.failed),
            duplicates=list(result.duplicates),
        )


class EntryUpdateRequest(BaseModel):
    """Partial update of the user-editable fields of an entry."""

    model_config = ConfigDict(extra="forbid")

    favorite: bool | None = None
    tags: list[str] | None = None
    bpm: float | None = Field(default=None, gt=0)
    asset_class: AssetClass | None = None


class LibraryStatsResponse(BaseModel):
    """Library screen counters."""

    music_count: int
    sfx_count: int
    total_count: int
    total_size_bytes: int
    mirrored_count: int
    favorite_count: int

    @classmethod
    def from_entity(cls, stats: LibraryStats) -> "LibraryStatsResponse":
        return cls(
            music_count=stats.music_count,
            sfx_count=stats.sfx_count,
            total_count=stats.total_count,
            total_size_bytes=stats.total_size_bytes,
            mirrored_count=stats.mirrored_count,
            favorite_count=stats.favorite_count,
        )
