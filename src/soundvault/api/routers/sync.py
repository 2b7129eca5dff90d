"""Sync API endpoints: status, full sync, scheduling and queue maintenance."""

import logging

from fastapi import APIRouter, Depends, Query

from soundvault.api.dependencies import (
    get_reconciliation_service,
    get_sync_queue,
    get_sync_queue_worker,
)
from soundvault.api.schemas.sync import (
    ProcessQueueResponse,
    QueueItemResponse,
    QueueMaintenanceResponse,
    QueueStatsResponse,
    ScheduleSyncResponse,
    SyncResultResponse,
    SyncStatusResponse,
)
from soundvault.application.services.reconciliation_service import ReconciliationService
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.application.workers.sync_queue_worker import SyncQueueWorker
from soundvault.domain.entities import SyncStatus
from soundvault.domain.exceptions import RemoteUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync")


# Hey future me - status is informational, so "not configured" is a 200 with configured=false
# (the UI still shows how many local files await upload). Actions that NEED the remote
# answer 409 remote_not_configured instead.
@router.get("/status")
async def get_sync_status(
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> SyncStatusResponse:
    """Count uploads and downloads needed to reach parity."""
    return SyncStatusResponse.from_entity(await reconciliation.compute_sync_status())


@router.post("/full")
async def run_full_sync(
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> SyncResultResponse:
    """Upload every local-only entry, then download every remote-only object."""
    result = await reconciliation.full_sync()
    if not result.configured:
        raise RemoteUnavailableError()
    return SyncResultResponse.from_entity(result)


@router.post("/schedule")
async def schedule_sync(
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> ScheduleSyncResponse:
    """Queue the current delta for the background queue worker."""
    return ScheduleSyncResponse(queued=await reconciliation.schedule_sync())


@router.get("/queue/stats")
async def get_queue_stats(
    sync_queue: SyncQueue = Depends(get_sync_queue),
) -> QueueStatsResponse:
    return QueueStatsResponse.from_entity(await sync_queue.get_stats())


@router.get("/queue/items")
async def list_queue_items(
    status: SyncStatus | None = Query(default=None),
    sync_queue: SyncQueue = Depends(get_sync_queue),
) -> list[QueueItemResponse]:
    items = await sync_queue.list_items(status)
    return [QueueItemResponse.from_entity(item) for item in items]


@router.post("/queue/process")
async def process_queue(
    worker: SyncQueueWorker = Depends(get_sync_queue_worker),
) -> ProcessQueueResponse:
    """Drain one batch now instead of waiting for the next poll."""
    return ProcessQueueResponse(completed=await worker.run_once())


@router.post("/queue/clear-failed")
async def clear_permanently_failed(
    sync_queue: SyncQueue = Depends(get_sync_queue),
) -> QueueMaintenanceResponse:
    """Drop items that exhausted their retries."""
    return QueueMaintenanceResponse(affected=await sync_queue.clear_permanently_failed())


@router.post("/queue/retry-failed")
async def retry_permanently_failed(
    sync_queue: SyncQueue = Depends(get_sync_queue),
) -> QueueMaintenanceResponse:
    """Give permanently failed items a fresh set of retries."""
    return QueueMaintenanceResponse(affected=await sync_queue.retry_permanently_failed())
