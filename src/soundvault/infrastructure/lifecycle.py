"""Application lifecycle management for startup and shutdown tasks.

This module builds every service object ONCE and hands them to the routes through
app.state.services. No module-level singletons: tests build their own container.

Startup order:
1. logging
2. database (tables created when database.auto_create_tables is set)
3. service objects (construction only, no I/O)
4. library root resolved (``~`` expanded) and music/ + sfx/ created
5. sync queue crash recovery: PROCESSING → PENDING
6. metadata worker pool
7. library watcher
8. background workers (sync queue drain, auto sync)

Shutdown runs the reverse: workers, watcher, pool, remote client, database.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field

from fastapi import FastAPI

from soundvault.application.services.import_service import ImportService, PathClaims
from soundvault.application.services.library_service import LibraryService
from soundvault.application.services.library_watcher import LibraryWatcher
from soundvault.application.services.metadata_worker_pool import MetadataWorkerPool
from soundvault.application.services.reconciliation_service import ReconciliationService
from soundvault.application.services.remote_store_provider import (
    RemoteStoreProvider,
    StoreFactory,
)
from soundvault.application.services.remote_sync_executor import RemoteSyncExecutor
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.application.workers.auto_sync_worker import AutoSyncWorker
from soundvault.application.workers.sync_queue_worker import (
    SyncQueueWorker,
    create_sync_queue_worker,
)
from soundvault.config import Settings, get_settings
from soundvault.infrastructure.notifications import EventBroadcaster
from soundvault.infrastructure.observability import configure_logging
from soundvault.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Everything the routes and workers share, wired together."""

    settings: Settings
    database: Database
    notifier: EventBroadcaster
    worker_pool: MetadataWorkerPool
    path_claims: PathClaims
    sync_queue: SyncQueue
    remote_provider: RemoteStoreProvider
    import_service: ImportService
    library_service: LibraryService
    executor: RemoteSyncExecutor
    reconciliation: ReconciliationService
    watcher: LibraryWatcher
    sync_queue_worker: SyncQueueWorker
    auto_sync_worker: AutoSyncWorker
    tasks: dict[str, asyncio.Task[None]] = field(default_factory=dict)


def build_services(
    settings: Settings,
    database: Database,
    store_factory: StoreFactory | None = None,
) -> AppServices:
    """Construct and wire all services. Does no I/O.

    Args:
        settings: Process settings
        database: Initialized database
        store_factory: Remote adapter factory override (tests pass an in-memory store)

    Returns:
        AppServices container
    """
    session_factory = database.session_factory
    default_library_path = settings.storage.default_library_path

    notifier = EventBroadcaster()
    worker_pool = MetadataWorkerPool(settings.worker)
    path_claims = PathClaims()
    sync_queue = SyncQueue(
        session_factory,
        max_retries=settings.sync.max_retries,
        lease_timeout_seconds=settings.sync.lease_timeout_seconds,
    )
    remote_provider = RemoteStoreProvider(session_factory, settings.remote, store_factory)

    import_service = ImportService(
        session_factory,
        worker_pool,
        notifier,
        default_library_path=default_library_path,
        path_claims=path_claims,
        sync_queue=sync_queue,
        remote_provider=remote_provider,
        max_concurrent_analysis=settings.worker.max_workers,
    )
    library_service = LibraryService(session_factory, sync_queue)
    executor = RemoteSyncExecutor(
        session_factory,
        remote_provider,
        worker_pool,
        notifier,
        library_root=import_service.get_library_root,
        path_claims=path_claims,
    )
    reconciliation = ReconciliationService(
        session_factory, remote_provider, executor, sync_queue, notifier
    )
    watcher = LibraryWatcher(
        import_service, notifier, stability_seconds=settings.watcher.stability_seconds
    )
    sync_queue_worker = create_sync_queue_worker(
        sync_queue,
        executor,
        remote_provider,
        poll_interval=settings.sync.queue_poll_interval_seconds,
        batch_size=settings.sync.queue_batch_size,
    )
    auto_sync_worker = AutoSyncWorker(
        session_factory,
        reconciliation,
        interval_seconds=settings.sync.auto_sync_interval_seconds,
    )

    return AppServices(
        settings=settings,
        database=database,
        notifier=notifier,
        worker_pool=worker_pool,
        path_claims=path_claims,
        sync_queue=sync_queue,
        remote_provider=remote_provider,
        import_service=import_service,
        library_service=library_service,
        executor=executor,
        reconciliation=reconciliation,
        watcher=watcher,
        sync_queue_worker=sync_queue_worker,
        auto_sync_worker=auto_sync_worker,
    )


async def start_services(services: AppServices) -> None:
    """Run startup steps 4-8 on an already built container."""
    library_root = await services.import_service.get_library_root()
    logger.info(f"Library root: {library_root}")

    await services.sync_queue.reset_stuck_items()
    await services.worker_pool.start()

    if services.settings.watcher.enabled:
        await services.watcher.start(library_root)
    else:
        logger.info("Library watcher disabled")

    services.tasks["sync_queue_worker"] = asyncio.create_task(
        services.sync_queue_worker.start(), name="sync_queue_worker"
    )
    services.tasks["auto_sync_worker"] = asyncio.create_task(
        services.auto_sync_worker.start(), name="auto_sync_worker"
    )
    logger.info("Background workers started")


async def _stop_task(name: str, task: asyncio.Task[None], timeout: float) -> None:
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except TimeoutError:
        logger.warning(f"{name} did not stop within {timeout}s, cancelling")
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    except Exception as e:
        logger.exception(f"{name} ended with an error: {e}")


async def stop_services(services: AppServices) -> None:
    """Stop everything start_services() started, in reverse order. Never raises."""
    services.sync_queue_worker.stop()
    services.auto_sync_worker.stop()
    tasks, services.tasks = services.tasks, {}
    timeout = services.settings.observability.shutdown_timeout
    for name, task in tasks.items():
        await _stop_task(name, task, timeout)

    for name, closer in (
        ("library watcher", services.watcher.stop),
        ("metadata worker pool", services.worker_pool.shutdown),
        ("remote store client", services.remote_provider.close),
    ):
        try:
            await closer()
        except Exception as e:
            logger.exception(f"Error stopping {name}: {e}")


# Listen future me, @asynccontextmanager makes this a CONTEXT MANAGER for FastAPI lifespan!
# Everything before `yield` runs at STARTUP, everything after runs at SHUTDOWN. The
# try/finally ensures cleanup ALWAYS runs, even when startup fails halfway.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = getattr(app.state, "settings", None) or get_settings()
    store_factory: StoreFactory | None = getattr(app.state, "store_factory", None)

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info(f"Starting application: {settings.app_name}")

    db = Database(settings)
    services: AppServices | None = None
    try:
        if settings.database.auto_create_tables:
            await db.create_tables()
        logger.info(f"Database initialized: {settings.database.url}")

        services = build_services(settings, db, store_factory)
        app.state.services = services
        await start_services(services)

        yield
    except Exception as e:
        logger.exception(f"Error during application startup: {e}")
        raise
    finally:
        logger.info("Shutting down application")
        if services is not None:
            await stop_services(services)
        try:
            await db.close()
            logger.info("Database connection closed")
        except Exception as e:
            logger.exception(f"Error closing database: {e}")
