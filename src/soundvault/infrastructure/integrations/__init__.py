"""External service integrations."""

from soundvault.infrastructure.integrations.storage_client import SupabaseStorageClient

__all__ = ["SupabaseStorageClient"]
