"""Auto Sync Worker - periodic full sync while the user has auto sync switched on.

Hey future me - the auto_sync flag lives in the DB (settings screen), so it's re-read
EVERY cycle. Flip it on and the next cycle syncs; flip it off and the worker just idles.
No restart needed either way.

Overlap is harmless: ReconciliationService.full_sync() returns skipped=True if a sync
(manual or automatic) is already running.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.app_settings_service import AppSettingsService
from soundvault.application.services.reconciliation_service import ReconciliationService
from soundvault.infrastructure.observability.logging import set_correlation_id

logger = logging.getLogger(__name__)


class AutoSyncWorker:
    """Worker that runs full_sync() every interval when auto sync is enabled."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reconciliation: ReconciliationService,
        interval_seconds: float = 300.0,
    ) -> None:
        """Initialize the auto sync worker.

        Args:
            session_factory: Factory for creating DB sessions (settings lookup)
            reconciliation: Engine that performs the sync
            interval_seconds: Seconds between checks (default: 300)
        """
        self._session_factory = session_factory
        self._reconciliation = reconciliation
        self._interval = interval_seconds
        self._running = False
        self._stop_event = asyncio.Event()
        self._stats: dict[str, Any] = {
            "syncs_run": 0,
            "last_check_at": None,
            "last_result": None,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker. Runs continuously until stop() is called."""
        if self._stop_event.is_set():
            return
        self._running = True
        logger.info(f"AutoSyncWorker started (interval={self._interval}s)")

        while self._running:
            # Wait one interval; stop() ends the wait early
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except TimeoutError:
                pass
            set_correlation_id()
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"AutoSyncWorker error: {e}")

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        self._stop_event.set()
        logger.info("AutoSyncWorker stopping...")

    async def run_once(self) -> bool:
        """Run one full sync if auto sync is on.

        Returns:
            True if a sync actually ran (not disabled, not skipped, remote configured)
        """
        self._stats["last_check_at"] = datetime.now(UTC).isoformat()
        async with self._session_factory() as session:
            library = await AppSettingsService(session).get_library_settings()
        if not library.auto_sync:
            return False

        result = await self._reconciliation.full_sync()
        self._stats["last_result"] = {
            "uploaded": result.uploaded,
            "downloaded": result.downloaded,
            "failed": result.failed,
            "configured": result.configured,
            "skipped": result.skipped,
        }
        if result.skipped or not result.configured:
            return False
        self._stats["syncs_run"] += 1
        return True

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "running": self._running, "interval": self._interval}
