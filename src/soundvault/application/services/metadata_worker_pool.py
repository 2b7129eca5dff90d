"""Process pool for hashing and duration probing.

Hey future me - hashing a 500MB WAV on the event loop thread would freeze every API call
for seconds. This pool ships the work to a few worker PROCESSES (hashing is CPU-bound, the
GIL would serialize threads) and correlates answers by task_id:

    caller ── AnalysisTask(task_id, kind, path) ──► worker process
    caller ◄── AnalysisResponse(task_id, ...) ───── worker process

The caller keeps a pending map {task_id: future}. A response resolves the matching
future; a response for an evicted task_id (timed out) is silently dropped.

The pool is a convenience, never a requirement. Whenever it's disabled, not started, not
ready or marked unavailable, the SAME analysis runs in-process on the default thread
executor. Callers get identical results and identical exceptions either way.

Failure modes:
- Task timeout  → MetadataTimeoutError, pool marked unavailable (later calls fall back)
- Worker crash  → BrokenProcessPool; every pending task rejected with
                  WorkerCrashedError, pool marked unavailable. Never fatal.
"""

import asyncio
import concurrent.futures
import logging
import multiprocessing
import uuid
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from soundvault.application.services.file_analysis import (
    analyze_file,
    compute_file_hash,
)
from soundvault.config.settings import WorkerSettings
from soundvault.domain.entities import FileMetadata
from soundvault.domain.exceptions import MetadataTimeoutError, WorkerCrashedError

logger = logging.getLogger(__name__)

TaskKind = Literal["hash", "metadata", "full", "ping"]


@dataclass(frozen=True)
class AnalysisTask:
    """Request sent to a worker unit."""

    task_id: str
    kind: TaskKind
    file_path: str = ""


@dataclass(frozen=True)
class AnalysisResponse:
    """Answer from a worker unit.

    success=False carries the error text of an unreadable/missing file; anything
    else a worker raises travels back as the exception itself.
    """

    task_id: str
    success: bool
    hash: str | None = None
    duration_seconds: float = 0.0
    size_bytes: int = 0
    error: str | None = None


def run_analysis_task(task: AnalysisTask) -> AnalysisResponse:
    """Execute one task. Runs inside a worker process (or a fallback thread)."""
    if task.kind == "ping":
        return AnalysisResponse(task_id=task.task_id, success=True)
    try:
        if task.kind == "hash":
            return AnalysisResponse(
                task_id=task.task_id,
                success=True,
                hash=compute_file_hash(task.file_path),
                size_bytes=Path(task.file_path).stat().st_size,
            )
        metadata = analyze_file(task.file_path, include_hash=task.kind == "full")
    except OSError as e:
        return AnalysisResponse(task_id=task.task_id, success=False, error=str(e))
    return AnalysisResponse(
        task_id=task.task_id,
        success=True,
        hash=metadata.content_hash or None,
        duration_seconds=metadata.duration_seconds,
        size_bytes=metadata.size_bytes,
    )


class MetadataWorkerPool:
    """Offloads file analysis to a process pool with an in-process fallback."""

    def __init__(self, settings: WorkerSettings) -> None:
        """Initialize the pool (no processes are started until start()).

        Args:
            settings: Worker settings (enabled, max_workers, task_timeout_seconds)
        """
        self._settings = settings
        self._timeout = settings.task_timeout_seconds
        self._executor: concurrent.futures.ProcessPoolExecutor | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: dict[str, asyncio.Future[AnalysisResponse]] = {}
        self._ready = False
        self._available = False
        self._stats = {"pool_tasks": 0, "fallback_tasks": 0, "timeouts": 0, "crashes": 0}

    @property
    def is_available(self) -> bool:
        """True when requests go to the worker processes."""
        return self._available and self._ready and self._executor is not None

    async def start(self) -> None:
        """Spawn worker processes and wait for them to answer a ping.

        Safe to call twice. If the pool can't come up, it stays unavailable and every
        request uses the fallback path.
        """
        if self._executor is not None:
            return
        if not self._settings.enabled:
            logger.info("Metadata worker pool disabled, analysis runs in-process")
            return

        self._loop = asyncio.get_running_loop()
        # spawn: forking a process that already runs threads (watchdog, executors) is unsafe
        self._executor = concurrent.futures.ProcessPoolExecutor(
            max_workers=self._settings.max_workers,
            mp_context=multiprocessing.get_context("spawn"),
        )
        self._available = True

        try:
            await self._dispatch(AnalysisTask(task_id=self._new_task_id(), kind="ping"))
        except Exception as e:
            logger.warning(f"Metadata worker pool failed to start, using fallback: {e}")
            self._mark_unavailable()
            return

        self._ready = True
        logger.info(
            f"Metadata worker pool ready with {self._settings.max_workers} worker(s)"
        )

    async def shutdown(self) -> None:
        """Stop worker processes. Pending tasks are rejected."""
        self._ready = False
        self._available = False
        self._reject_pending(WorkerCrashedError("Worker pool shut down"))
        executor, self._executor = self._executor, None
        if executor is not None:
            # shutdown(wait=True) blocks; keep the event loop free while workers exit
            await asyncio.get_running_loop().run_in_executor(
                None, lambda: executor.shutdown(wait=True, cancel_futures=True)
            )
            logger.info("Metadata worker pool stopped")

    async def compute_metadata(self, file_path: str | Path) -> FileMetadata:
        """Content hash, duration and size of a file.

        Raises:
            OSError: If the file is missing or unreadable
            MetadataTimeoutError: If the worker didn't answer in time
            WorkerCrashedError: If the worker process died mid-task
        """
        response = await self._run("full", file_path)
        return FileMetadata(
            content_hash=response.hash or "",
            duration_seconds=response.duration_seconds,
            size_bytes=response.size_bytes,
        )

    async def compute_hash(self, file_path: str | Path) -> str:
        """Content hash only."""
        response = await self._run("hash", file_path)
        return response.hash or ""

    async def probe(self, file_path: str | Path) -> FileMetadata:
        """Duration and size only (content_hash is "")."""
        response = await self._run("metadata", file_path)
        return FileMetadata(
            content_hash="",
            duration_seconds=response.duration_seconds,
            size_bytes=response.size_bytes,
        )

    def get_stats(self) -> dict[str, Any]:
        """Get pool statistics."""
        return {
            "available": self.is_available,
            "max_workers": self._settings.max_workers,
            "pending": len(self._pending),
            **self._stats,
        }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _new_task_id() -> str:
        return uuid.uuid4().hex

    async def _run(self, kind: TaskKind, file_path: str | Path) -> AnalysisResponse:
        task = AnalysisTask(task_id=self._new_task_id(), kind=kind, file_path=str(file_path))
        if self.is_available:
            self._stats["pool_tasks"] += 1
            response = await self._dispatch(task)
        else:
            self._stats["fallback_tasks"] += 1
            response = await asyncio.get_running_loop().run_in_executor(
                None, run_analysis_task, task
            )
        if not response.success:
            raise OSError(response.error or f"Cannot read {file_path}")
        return response

    async def _dispatch(self, task: AnalysisTask) -> AnalysisResponse:
        """Send a task to the process pool and await the correlated response."""
        assert self._executor is not None and self._loop is not None
        loop = self._loop
        future: asyncio.Future[AnalysisResponse] = loop.create_future()
        self._pending[task.task_id] = future

        try:
            pool_future = self._executor.submit(run_analysis_task, task)
        except (BrokenProcessPool, RuntimeError) as e:
            # RuntimeError: executor already shut down after an earlier timeout
            self._pending.pop(task.task_id, None)
            self._handle_crash(e)
            raise WorkerCrashedError(f"Worker pool unavailable: {e}") from e

        pool_future.add_done_callback(
            lambda f: loop.call_soon_threadsafe(self._on_response, task.task_id, f)
        )

        try:
            return await asyncio.wait_for(future, timeout=self._timeout)
        except TimeoutError:
            # Evict first: a late answer must find nothing to resolve
            self._pending.pop(task.task_id, None)
            self._stats["timeouts"] += 1
            logger.warning(
                f"Worker task {task.task_id} ({task.kind}) timed out after "
                f"{self._timeout:.0f}s, switching to in-process analysis"
            )
            self._mark_unavailable()
            raise MetadataTimeoutError(task.task_id, self._timeout) from None

    def _on_response(
        self, task_id: str, pool_future: "concurrent.futures.Future[AnalysisResponse]"
    ) -> None:
        """Resolve the pending future for task_id (runs on the event loop)."""
        future = self._pending.pop(task_id, None)
        if future is None or future.done():
            logger.debug(f"Ignoring late response for task {task_id}")
            return

        if pool_future.cancelled():
            future.set_exception(WorkerCrashedError("Worker task cancelled"))
            return

        error = pool_future.exception()
        if isinstance(error, BrokenProcessPool):
            future.set_exception(WorkerCrashedError(f"Worker process died: {error}"))
            self._handle_crash(error)
        elif error is not None:
            future.set_exception(error)
        else:
            future.set_result(pool_future.result())

    def _handle_crash(self, error: BaseException) -> None:
        if not self._available:
            return
        self._stats["crashes"] += 1
        logger.error(f"Metadata worker pool crashed, switching to in-process analysis: {error}")
        self._reject_pending(WorkerCrashedError(f"Worker process died: {error}"))
        self._mark_unavailable()

    def _reject_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    def _mark_unavailable(self) -> None:
        self._available = False
        self._ready = False
        executor, self._executor = self._executor, None
        if executor is not None:
            # A hung worker would block wait=True forever
            executor.shutdown(wait=False, cancel_futures=True)
