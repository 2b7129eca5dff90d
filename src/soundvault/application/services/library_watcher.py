"""Library folder watcher.

Hey future me - this catches files that land in the library WITHOUT going through the
import screen (Finder drag-and-drop, a DAW bouncing straight into sfx/, a sync tool...).

How it works:
- watchdog's Observer watches the library root recursively on its OWN thread. Handler
  callbacks only hop onto the event loop via call_soon_threadsafe, nothing else.
- created / moved-in audio files get a stability check: size and mtime must stay unchanged
  for stability_seconds before the file counts as "added". Half-written files are never
  hashed.
- stable files go through ImportService.ingest_library_file() (hash → dedup → insert; no
  copy). Paths claimed by the import pipeline or a remote download are skipped there.
- deleted / moved-out files only emit library-updated {type: "remove", path}. The catalog
  entry stays; the user decides what to do with it.
- files that already exist when the watcher starts are ignored (no initial scan), and so
  are dot-files and non-audio files.

start(), stop() and restart() are idempotent; restart() is what the settings screen calls
when the library path changes.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from soundvault.application.services.import_service import ImportService
from soundvault.domain.ports.notification import INotificationSink, LibraryUpdatedEvent
from soundvault.domain.value_objects.audio_files import is_audio_file

logger = logging.getLogger(__name__)


class _LibraryEventHandler(FileSystemEventHandler):
    """Runs on the watchdog thread; forwards to the loop."""

    def __init__(self, watcher: "LibraryWatcher", loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self._watcher = watcher
        self._loop = loop

    def _forward(self, callback: Callable[[str], None], path: str) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, path)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(self._watcher._on_added, str(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(self._watcher._on_removed, str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(self._watcher._on_removed, str(event.src_path))
        self._forward(self._watcher._on_added, str(event.dest_path))


class LibraryWatcher:
    """Watches the library tree and catalogs externally added files."""

    def __init__(
        self,
        import_service: ImportService,
        notifier: INotificationSink,
        stability_seconds: float = 1.0,
    ) -> None:
        """Initialize the watcher (nothing is watched until start()).

        Args:
            import_service: Ingest path and path claims
            notifier: UI event sink for removals
            stability_seconds: Quiet period before a new file counts as added
        """
        self._import_service = import_service
        self._notifier = notifier
        self._stability_seconds = stability_seconds
        self._observer: Observer | None = None  # type: ignore[valid-type]
        self._root: Path | None = None
        self._pending: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    @property
    def library_root(self) -> Path | None:
        return self._root

    async def start(self, library_root: Path | None = None) -> None:
        """Start watching library_root (default: the configured library root)."""
        async with self._lock:
            if self._observer is not None:
                return
            root = library_root or await self._import_service.get_library_root()
            root = root.resolve()
            root.mkdir(parents=True, exist_ok=True)

            observer = Observer()
            observer.schedule(
                _LibraryEventHandler(self, asyncio.get_running_loop()),
                str(root),
                recursive=True,
            )
            observer.daemon = True
            observer.start()
            self._observer = observer
            self._root = root
            logger.info(f"Watching library at {root}")

    async def stop(self) -> None:
        """Stop watching and drop pending stability checks. Safe to call repeatedly."""
        async with self._lock:
            observer, self._observer = self._observer, None
            pending, self._pending = self._pending, {}
            for task in pending.values():
                task.cancel()
            if observer is None:
                return
            observer.stop()
            await asyncio.to_thread(observer.join, 5.0)
            logger.info(f"Stopped watching {self._root}")

    async def restart(self, library_root: Path | None = None) -> None:
        await self.stop()
        await self.start(library_root)

    def get_stats(self) -> dict[str, object]:
        return {
            "running": self.is_running,
            "library_root": str(self._root) if self._root else None,
            "pending_checks": len(self._pending),
        }

    # =========================================================================
    # EVENTS (event loop thread)
    # =========================================================================

    def _is_relevant(self, path: str) -> bool:
        if self._root is None:
            return False
        candidate = Path(path)
        try:
            relative = candidate.relative_to(self._root)
        except ValueError:
            return False
        if any(part.startswith(".") for part in relative.parts):
            return False
        return is_audio_file(candidate)

    def _on_added(self, path: str) -> None:
        if self._observer is None or not self._is_relevant(path):
            return
        if path in self._pending:
            return
        task = asyncio.get_running_loop().create_task(self._ingest_when_stable(path))
        self._pending[path] = task
        task.add_done_callback(lambda _t, p=path: self._forget(p, _t))

    def _forget(self, path: str, task: "asyncio.Task[None]") -> None:
        if self._pending.get(path) is task:
            del self._pending[path]

    def _on_removed(self, path: str) -> None:
        if not self._is_relevant(path):
            return
        task = self._pending.pop(path, None)
        if task is not None:
            task.cancel()
        logger.info(f"Library file removed: {path}")
        self._notifier.emit(LibraryUpdatedEvent(type="remove", path=path))

    async def _wait_until_stable(self, path: Path) -> bool:
        """True once size and mtime held still for the quiet period; False if it vanished."""
        previous: tuple[int, int] | None = None
        while True:
            try:
                stat = await asyncio.to_thread(path.stat)
            except FileNotFoundError:
                return False
            current = (stat.st_size, stat.st_mtime_ns)
            if current == previous:
                return True
            previous = current
            await asyncio.sleep(self._stability_seconds)

    async def _ingest_when_stable(self, path: str) -> None:
        try:
            if not await self._wait_until_stable(Path(path)):
                return
            await self._import_service.ingest_library_file(path)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Failed to ingest new library file {path}")
