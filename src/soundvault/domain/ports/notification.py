"""Notification sink port for UI events.

Hey future me - the core EMITS these and never waits for anything back. A sink must
not raise into the caller: an import batch must not fail because nobody is listening
to its progress bar. Event names match what the UI subscribes to.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Literal

from soundvault.domain.entities import CatalogEntry


@dataclass(frozen=True)
class ImportProgressEvent:
    """Emitted after each path of an import batch, in input order."""

    name: ClassVar[str] = "import-progress"

    current: int
    total: int
    filename: str

    def to_dict(self) -> dict[str, Any]:
        return {"current": self.current, "total": self.total, "filename": self.filename}


@dataclass(frozen=True)
class LibraryUpdatedEvent:
    """Catalog changed: an entry was added, or a file disappeared from the library."""

    name: ClassVar[str] = "library-updated"

    type: Literal["add", "remove"]
    entry: CatalogEntry | None = None
    path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.entry is not None:
            payload["entry"] = self.entry.to_dict()
        if self.path is not None:
            payload["path"] = self.path
        return payload


@dataclass(frozen=True)
class SyncCompleteEvent:
    """Emitted at the end of a full sync."""

    name: ClassVar[str] = "sync-complete"

    synced: int
    time: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"synced": self.synced, "time": self.time.isoformat()}


NotificationEvent = ImportProgressEvent | LibraryUpdatedEvent | SyncCompleteEvent


class INotificationSink(ABC):
    """Fire-and-forget event sink."""

    @abstractmethod
    def emit(self, event: NotificationEvent) -> None:
        """Deliver an event. Must never raise."""


class NullNotificationSink(INotificationSink):
    """Sink that drops everything (CLI use, tests that don't care)."""

    def emit(self, event: NotificationEvent) -> None:
        return None
