"""Builds and caches the remote store adapter from runtime settings.

Hey future me - the remote URL is a user setting and the API key is a secret, both
editable at runtime. So we can't build the client once at startup: every sync entry
point asks this provider, which re-reads the credentials (cheap, one short DB session),
reuses the cached client while they're unchanged and swaps it when they change.

Missing URL or key → RemoteUnavailableError. That's the "not configured" signal every
sync path checks BEFORE doing work.
"""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundvault.application.services.credentials_service import (
    CredentialsService,
    RemoteCredentials,
)
from soundvault.config.settings import RemoteSettings
from soundvault.domain.exceptions import RemoteOperationError, RemoteUnavailableError
from soundvault.domain.ports.remote_store import IRemoteStore
from soundvault.infrastructure.integrations.storage_client import SupabaseStorageClient

logger = logging.getLogger(__name__)

StoreFactory = Callable[[RemoteCredentials], IRemoteStore]


class RemoteStoreProvider:
    """Hands out a ready-to-use IRemoteStore, or raises RemoteUnavailableError."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: RemoteSettings,
        store_factory: StoreFactory | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            session_factory: Factory for short-lived DB sessions
            settings: Bucket name and request timeout
            store_factory: Builds an adapter from credentials (defaults to Supabase)
        """
        self._session_factory = session_factory
        self._settings = settings
        self._store_factory = store_factory or self._build_supabase_client
        self._store: IRemoteStore | None = None
        self._store_credentials: tuple[str, str] | None = None
        self._bucket_ready = False
        self._lock = asyncio.Lock()

    def _build_supabase_client(self, credentials: RemoteCredentials) -> IRemoteStore:
        return SupabaseStorageClient(
            url=credentials.url,
            api_key=credentials.api_key or "",
            bucket=self._settings.bucket,
            timeout=self._settings.request_timeout_seconds,
        )

    async def _load_credentials(self) -> RemoteCredentials:
        async with self._session_factory() as session:
            return await CredentialsService(session).get_remote_credentials()

    async def is_configured(self) -> bool:
        """True when both the remote URL and the API key are set."""
        return (await self._load_credentials()).is_configured()

    async def get_store(self) -> IRemoteStore:
        """Adapter for the current credentials, bucket ensured.

        Raises:
            RemoteUnavailableError: Not configured, or the remote can't be reached
            RemoteOperationError: The remote rejected bucket setup
        """
        credentials = await self._load_credentials()
        if not credentials.is_configured():
            raise RemoteUnavailableError()

        identity = (credentials.url, credentials.api_key or "")
        async with self._lock:
            if self._store is None or self._store_credentials != identity:
                await self._close_store()
                self._store = self._store_factory(credentials)
                self._store_credentials = identity
                self._bucket_ready = False
                logger.info(f"Remote store client created for {credentials.url}")

            if not self._bucket_ready:
                await self._ensure_bucket(self._store)
                self._bucket_ready = True
            return self._store

    async def _ensure_bucket(self, store: IRemoteStore) -> None:
        try:
            if not await store.bucket_exists():
                await store.create_bucket()
        except RemoteOperationError as e:
            if e.status_code is None:
                # Transport failure: offline or wrong host
                raise RemoteUnavailableError(f"Remote storage is unreachable: {e.message}") from e
            raise

    async def _close_store(self) -> None:
        store, self._store = self._store, None
        self._store_credentials = None
        if store is not None:
            await store.close()

    async def close(self) -> None:
        """Close the cached adapter (app shutdown)."""
        async with self._lock:
            await self._close_store()
