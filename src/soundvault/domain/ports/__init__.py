"""Domain ports (interfaces) for dependency inversion."""

from soundvault.domain.ports.notification import (
    ImportProgressEvent,
    INotificationSink,
    LibraryUpdatedEvent,
    NotificationEvent,
    NullNotificationSink,
    SyncCompleteEvent,
)
from soundvault.domain.ports.remote_store import (
    IRemoteStore,
    RemoteListPage,
    RemoteObject,
    RemoteObjectRef,
)

__all__ = [
    "ImportProgressEvent",
    "INotificationSink",
    "LibraryUpdatedEvent",
    "NotificationEvent",
    "NullNotificationSink",
    "SyncCompleteEvent",
    "IRemoteStore",
    "RemoteListPage",
    "RemoteObject",
    "RemoteObjectRef",
]
