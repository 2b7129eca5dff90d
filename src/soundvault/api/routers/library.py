"""Library API endpoints: import, browse, edit, delete, stats."""

import logging

from fastapi import APIRouter, Depends, Query, status

from soundvault.api.dependencies import get_import_service, get_library_service
from soundvault.api.schemas.library import (
    CatalogEntryResponse,
    EntryUpdateRequest,
    ImportRequest,
    ImportResponse,
    LibraryStatsResponse,
)
from soundvault.application.services.import_service import ImportService
from soundvault.application.services.library_service import LibraryService
from soundvault.domain.entities import AssetClass
from soundvault.domain.exceptions import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/library")


# Hey future me - import never fails as a whole: bad paths land in "failed", known content in
# "duplicates", so this is always a 200. Progress goes out as import-progress SSE events
# while the request is still running.
@router.post("/import")
async def import_files(
    request: ImportRequest,
    import_service: ImportService = Depends(get_import_service),
) -> ImportResponse:
    """Import audio files into the managed library (copy, never move)."""
    result = await import_service.import_files(request.paths, force_type=request.force_type)
    return ImportResponse.from_result(result)


@router.get("/entries")
async def list_entries(
    asset_class: AssetClass | None = Query(default=None),
    favorite: bool | None = Query(default=None),
    search: str | None = Query(default=None, min_length=1),
    mirrored: bool | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    library_service: LibraryService = Depends(get_library_service),
) -> list[CatalogEntryResponse]:
    """List catalog entries, newest first, with optional filters."""
    entries = await library_service.list_entries(
        asset_class=asset_class,
        favorite=favorite,
        search=search,
        mirrored=mirrored,
        limit=limit,
        offset=offset,
    )
    return [CatalogEntryResponse.from_entity(e) for e in entries]


@router.get("/entries/{entry_id}")
async def get_entry(
    entry_id: str,
    library_service: LibraryService = Depends(get_library_service),
) -> CatalogEntryResponse:
    return CatalogEntryResponse.from_entity(await library_service.get_entry(entry_id))


@router.patch("/entries/{entry_id}")
async def update_entry(
    entry_id: str,
    request: EntryUpdateRequest,
    library_service: LibraryService = Depends(get_library_service),
) -> CatalogEntryResponse:
    """Edit favorite, tags, bpm or asset class. Sending bpm=null clears it."""
    changes = {
        field: value
        for field, value in request.model_dump(exclude_unset=True).items()
        if value is not None or field == "bpm"
    }
    entry = await library_service.update_entry(entry_id, changes)
    return CatalogEntryResponse.from_entity(entry)


@router.post("/entries/{entry_id}/favorite")
async def toggle_favorite(
    entry_id: str,
    library_service: LibraryService = Depends(get_library_service),
) -> CatalogEntryResponse:
    return CatalogEntryResponse.from_entity(await library_service.toggle_favorite(entry_id))


@router.delete("/entries/{entry_id}")
async def delete_entry(
    entry_id: str,
    delete_file: bool = Query(default=True),
    delete_remote: bool = Query(default=True),
    library_service: LibraryService = Depends(get_library_service),
) -> dict[str, bool]:
    """Remove an entry; mirrored entries also get a remote delete queued."""
    queued = await library_service.delete_entry(
        entry_id, delete_file=delete_file, delete_remote=delete_remote
    )
    return {"deleted": True, "remote_delete_queued": queued}


@router.get("/stats")
async def get_stats(
    library_service: LibraryService = Depends(get_library_service),
) -> LibraryStatsResponse:
    return LibraryStatsResponse.from_entity(await library_service.get_stats())


# Hey future me - destructive! Deletes every library FILE too. Remote objects stay, so the
# next sync downloads everything again unless the user also clears the remote.
@router.delete("", status_code=status.HTTP_200_OK)
async def clear_library(
    confirm: bool = Query(default=False),
    library_service: LibraryService = Depends(get_library_service),
) -> dict[str, int]:
    """Remove every catalog entry and managed file (requires confirm=true)."""
    if not confirm:
        raise ValidationError("Clearing the library requires confirm=true")
    removed = await library_service.clear_library()
    return {"removed": removed}
