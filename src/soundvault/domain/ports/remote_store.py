"""Remote object store port.

Hey future me - this is the ONLY contract the sync code has with the remote mirror.
The adapter owns no local state; everything it needs comes in as arguments. Keys are
"<asset_class>/<filename>" strings and they are the sole identity shared between the
catalog and the remote listing.

Idempotency rules every adapter must follow (the sync queue is at-least-once):
- upload() overwrites an existing object with the same key
- delete() of an absent key returns False, it does not raise
- create_bucket() on an existing bucket is a no-op
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class RemoteObjectRef:
    """Identifiers of an uploaded object."""

    key: str
    url: str


@dataclass(frozen=True)
class RemoteObject:
    """One entry of a remote listing."""

    key: str
    size: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RemoteListPage:
    """One page of a listing. next_page_token is None on the last page."""

    items: list[RemoteObject] = field(default_factory=list)
    next_page_token: str | None = None


class IRemoteStore(ABC):
    """Interface for remote blob storage adapters."""

    @abstractmethod
    async def upload(self, data: bytes, key: str, content_type: str) -> RemoteObjectRef:
        """Store bytes under key, overwriting any existing object.

        Raises:
            RemoteOperationError: If the store rejects the upload
        """

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """Fetch the bytes stored under key.

        Raises:
            RemoteOperationError: If the object can't be fetched
        """

    @abstractmethod
    async def list(self, prefix: str, page_token: str | None = None) -> RemoteListPage:
        """List objects under prefix, one page at a time."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete an object. Returns False if it was already absent."""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Public URL for key (no request is made)."""

    @abstractmethod
    async def bucket_exists(self) -> bool:
        """Check whether the target bucket exists."""

    @abstractmethod
    async def create_bucket(self) -> None:
        """Create the target bucket; no-op if it already exists."""

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
