"""HTTP client for the Supabase Storage REST API.

Hey future me - this is the concrete IRemoteStore! It talks plain REST via httpx instead of
pulling in the full Supabase SDK, since we only need six object/bucket endpoints:

    POST   /storage/v1/object/{bucket}/{key}     upload (x-upsert: true → overwrite)
    GET    /storage/v1/object/{bucket}/{key}     download
    POST   /storage/v1/object/list/{bucket}      list one "folder" (offset pagination)
    DELETE /storage/v1/object/{bucket}           delete {"prefixes": [key]}
    GET    /storage/v1/bucket/{bucket}           bucket exists?
    POST   /storage/v1/bucket                    create bucket

Every failure (network or HTTP status) becomes RemoteOperationError, whose message ends up
as last_error on the sync queue item.

Usage:
    async with SupabaseStorageClient(url, api_key, bucket="soundvault-files") as client:
        ref = await client.upload(data, "music/track_1700000000000.wav", "audio/wav")
"""

import logging
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from soundvault.domain.exceptions import RemoteOperationError
from soundvault.domain.ports.remote_store import (
    IRemoteStore,
    RemoteListPage,
    RemoteObject,
    RemoteObjectRef,
)

logger = logging.getLogger(__name__)


def _parse_timestamp(raw: Any) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None


class SupabaseStorageClient(IRemoteStore):
    """Supabase Storage adapter over httpx."""

    # Objects per list request; a full page means "ask again with the next offset"
    PAGE_SIZE = 1000

    def __init__(
        self,
        url: str,
        api_key: str,
        bucket: str,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the client (no request is made yet).

        Args:
            url: Project URL, e.g. https://abc.supabase.co
            api_key: Service or anon key sent as bearer token
            bucket: Bucket holding the mirror
            timeout: Per-request timeout in seconds
        """
        self._base_url = url.rstrip("/")
        self._api_key = api_key
        self.bucket = bucket
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self._base_url}/storage/v1",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "apikey": self._api_key,
                },
                timeout=self._timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SupabaseStorageClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _object_path(self, key: str) -> str:
        return f"/object/{self.bucket}/{quote(key, safe='/')}"

    async def _request(
        self, method: str, path: str, action: str, **kwargs: Any
    ) -> httpx.Response:
        """Send a request; transport errors become RemoteOperationError."""
        try:
            return await self._get_client().request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteOperationError(f"{action} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
            detail = body.get("message") or body.get("error") or response.text
        except ValueError:
            detail = response.text
        raise RemoteOperationError(
            f"{action} failed with HTTP {response.status_code}: {detail}",
            status_code=response.status_code,
        )

    # =========================================================================
    # OBJECTS
    # =========================================================================

    async def upload(self, data: bytes, key: str, content_type: str) -> RemoteObjectRef:
        response = await self._request(
            "POST",
            self._object_path(key),
            f"Upload of {key}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "true"},
        )
        self._raise_for_status(response, f"Upload of {key}")
        logger.debug(f"Uploaded {key} ({len(data)} bytes)")
        return RemoteObjectRef(key=key, url=self.public_url(key))

    async def download(self, key: str) -> bytes:
        response = await self._request("GET", self._object_path(key), f"Download of {key}")
        self._raise_for_status(response, f"Download of {key}")
        return response.content

    async def delete(self, key: str) -> bool:
        response = await self._request(
            "DELETE",
            f"/object/{self.bucket}",
            f"Delete of {key}",
            json={"prefixes": [key]},
        )
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"Delete of {key}")
        removed = response.json()
        return bool(removed)

    def public_url(self, key: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{self.bucket}/{quote(key, safe='/')}"

    @staticmethod
    def _parse_listing(prefix: str, payload: Any) -> tuple[int, "list[RemoteObject]"]:
        """Turn a list response into objects, skipping folder placeholders (id null)."""
        raw_items = payload if isinstance(payload, list) else []
        objects = []
        for raw in raw_items:
            if not raw.get("id"):
                continue
            metadata = raw.get("metadata") or {}
            name = raw["name"]
            objects.append(
                RemoteObject(
                    key=f"{prefix.rstrip('/')}/{name}" if prefix else name,
                    size=int(metadata.get("size") or 0),
                    updated_at=_parse_timestamp(raw.get("updated_at")),
                )
            )
        return len(raw_items), objects

    async def list(self, prefix: str, page_token: str | None = None) -> RemoteListPage:
        """List one prefix. page_token is the offset of the next page."""
        offset = int(page_token) if page_token else 0
        response = await self._request(
            "POST",
            f"/object/list/{self.bucket}",
            f"Listing of {prefix!r}",
            json={
                "prefix": prefix,
                "limit": self.PAGE_SIZE,
                "offset": offset,
                "sortBy": {"column": "name", "order": "asc"},
            },
        )
        self._raise_for_status(response, f"Listing of {prefix!r}")
        raw_count, objects = self._parse_listing(prefix, response.json())
        next_token = str(offset + raw_count) if raw_count >= self.PAGE_SIZE else None
        return RemoteListPage(items=objects, next_page_token=next_token)

    # =========================================================================
    # BUCKET
    # =========================================================================

    async def bucket_exists(self) -> bool:
        response = await self._request(
            "GET", f"/bucket/{self.bucket}", f"Bucket lookup of {self.bucket}"
        )
        if response.status_code in (400, 404):
            return False
        self._raise_for_status(response, f"Bucket lookup of {self.bucket}")
        return True

    async def create_bucket(self) -> None:
        response = await self._request(
            "POST",
            "/bucket",
            f"Creation of bucket {self.bucket}",
            json={"id": self.bucket, "name": self.bucket, "public": True},
        )
        if response.status_code == 409 or (
            response.status_code == 400 and "already exists" in response.text.lower()
        ):
            return
        self._raise_for_status(response, f"Creation of bucket {self.bucket}")
        logger.info(f"Created remote bucket {self.bucket}")
