"""Shared fixtures.

Hey future me - every test gets its OWN file-backed SQLite database and library folder
under tmp_path, the worker pool disabled (analysis runs in-process, no spawned
processes) and the watcher off unless a test starts one itself. The remote is an
in-memory FakeRemoteStore; nothing here touches the network.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.app_settings_service import AppSettingsService
from soundvault.application.services.credentials_service import (
    REMOTE_API_KEY,
    CredentialsService,
    RemoteCredentials,
)
from soundvault.application.services.import_service import ImportService
from soundvault.application.services.metadata_worker_pool import MetadataWorkerPool
from soundvault.application.services.reconciliation_service import ReconciliationService
from soundvault.application.services.remote_store_provider import RemoteStoreProvider
from soundvault.application.services.remote_sync_executor import RemoteSyncExecutor
from soundvault.application.services.sync_queue import SyncQueue
from soundvault.config.settings import (
    DatabaseSettings,
    Settings,
    StorageSettings,
    SyncSettings,
    WatcherSettings,
    WorkerSettings,
)
from soundvault.domain.exceptions import RemoteOperationError
from soundvault.domain.ports.notification import INotificationSink, NotificationEvent
from soundvault.domain.ports.remote_store import (
    IRemoteStore,
    RemoteListPage,
    RemoteObject,
    RemoteObjectRef,
)
from soundvault.infrastructure.persistence.database import Database
from soundvault.main import create_app

REMOTE_URL = "https://remote.test"


class FakeRemoteStore(IRemoteStore):
    """In-memory remote store with switchable failures."""

    def __init__(self, page_size: int = 2) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        # Any key containing one of these markers fails to upload/download
        self.fail_markers: set[str] = set()
        self.bucket_ready = False
        self.closed = False
        self.uploads: list[str] = []
        self.deletes: list[str] = []
        self._page_size = page_size

    def _check(self, key: str, action: str) -> None:
        if any(marker in key for marker in self.fail_markers):
            raise RemoteOperationError(f"{action} of {key} failed", status_code=500)

    async def upload(self, data: bytes, key: str, content_type: str) -> RemoteObjectRef:
        self._check(key, "Upload")
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type
        self.uploads.append(key)
        return RemoteObjectRef(key=key, url=self.public_url(key))

    async def download(self, key: str) -> bytes:
        self._check(key, "Download")
        if key not in self.objects:
            raise RemoteOperationError(f"{key} not found", status_code=404)
        return self.objects[key]

    async def list(self, prefix: str, page_token: str | None = None) -> RemoteListPage:
        folder = prefix.rstrip("/") + "/"
        keys = sorted(key for key in self.objects if key.startswith(folder))
        offset = int(page_token) if page_token else 0
        page = keys[offset : offset + self._page_size]
        end = offset + self._page_size
        return RemoteListPage(
            items=[
                RemoteObject(key=key, size=len(self.objects[key]), updated_at=None)
                for key in page
            ],
            next_page_token=str(end) if end < len(keys) else None,
        )

    async def delete(self, key: str) -> bool:
        self.deletes.append(key)
        return self.objects.pop(key, None) is not None

    def public_url(self, key: str) -> str:
        return f"{REMOTE_URL}/public/{key}"

    async def bucket_exists(self) -> bool:
        return self.bucket_ready

    async def create_bucket(self) -> None:
        self.bucket_ready = True

    async def close(self) -> None:
        self.closed = True


class RecordingSink(INotificationSink):
    """Keeps every emitted event in order."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[NotificationEvent]:
        return [event for event in self.events if event.name == name]


def write_audio(path: Path, content: bytes) -> Path:
    """Create a fake audio file (content only matters for the hash)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture
def library_root(tmp_path: Path) -> Path:
    return tmp_path / "library"


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """Folder outside the library that imports are made from."""
    directory = tmp_path / "incoming"
    directory.mkdir()
    return directory


@pytest.fixture
def settings(tmp_path: Path, library_root: Path) -> Settings:
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        storage=StorageSettings(default_library_path=str(library_root)),
        worker=WorkerSettings(enabled=False),
        sync=SyncSettings(
            queue_poll_interval_seconds=3600,
            auto_sync_interval_seconds=3600,
        ),
        watcher=WatcherSettings(enabled=False, stability_seconds=0.05),
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def session_factory(db: Database) -> async_sessionmaker[AsyncSession]:
    return db.session_factory


@pytest.fixture
def remote_store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def store_factory(
    remote_store: FakeRemoteStore,
) -> Callable[[RemoteCredentials], IRemoteStore]:
    return lambda _credentials: remote_store


@pytest.fixture
def configure_remote(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[], Awaitable[None]]:
    """Store a remote URL and API key, which is all 'configured' means."""

    async def _configure() -> None:
        async with session_factory() as session:
            await AppSettingsService(session).update_library_settings(
                {"remote_url": REMOTE_URL}
            )
            await CredentialsService(session).set_secret(REMOTE_API_KEY, "test-key")
            await session.commit()

    return _configure


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def worker_pool(settings: Settings) -> MetadataWorkerPool:
    return MetadataWorkerPool(settings.worker)


@pytest.fixture
def sync_queue(session_factory: async_sessionmaker[AsyncSession]) -> SyncQueue:
    return SyncQueue(session_factory)


@pytest.fixture
def remote_provider(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    store_factory: Callable[[RemoteCredentials], IRemoteStore],
) -> RemoteStoreProvider:
    return RemoteStoreProvider(session_factory, settings.remote, store_factory)


@pytest.fixture
def import_service(
    session_factory: async_sessionmaker[AsyncSession],
    worker_pool: MetadataWorkerPool,
    sink: RecordingSink,
    library_root: Path,
    sync_queue: SyncQueue,
    remote_provider: RemoteStoreProvider,
) -> ImportService:
    return ImportService(
        session_factory,
        worker_pool,
        sink,
        default_library_path=str(library_root),
        sync_queue=sync_queue,
        remote_provider=remote_provider,
    )


@pytest.fixture
def executor(
    session_factory: async_sessionmaker[AsyncSession],
    remote_provider: RemoteStoreProvider,
    worker_pool: MetadataWorkerPool,
    sink: RecordingSink,
    import_service: ImportService,
) -> RemoteSyncExecutor:
    return RemoteSyncExecutor(
        session_factory,
        remote_provider,
        worker_pool,
        sink,
        library_root=import_service.get_library_root,
        path_claims=import_service.path_claims,
    )


@pytest.fixture
def reconciliation(
    session_factory: async_sessionmaker[AsyncSession],
    remote_provider: RemoteStoreProvider,
    executor: RemoteSyncExecutor,
    sync_queue: SyncQueue,
    sink: RecordingSink,
) -> ReconciliationService:
    return ReconciliationService(
        session_factory, remote_provider, executor, sync_queue, sink
    )


@pytest.fixture
def client(
    settings: Settings,
    store_factory: Callable[[RemoteCredentials], IRemoteStore],
) -> Generator[TestClient, None, None]:
    """TestClient running the full lifespan against the temp DB and fake remote."""
    app = create_app(settings, store_factory=store_factory)
    with TestClient(app) as test_client:
        yield test_client
