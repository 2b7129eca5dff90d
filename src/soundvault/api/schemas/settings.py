"""API schemas for user settings and the remote credential."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SettingsUpdateRequest(BaseModel):
    """Partial settings update. Unknown keys are rejected (422)."""

    model_config = ConfigDict(extra="forbid")

    local_library_path: str | None = Field(default=None, min_length=1)
    remote_url: str | None = None
    auto_sync: bool | None = None
    theme: Literal["light", "dark", "system"] | None = None
    onboarding_complete: bool | None = None


class RemoteKeyRequest(BaseModel):
    """Stores the remote API key (write-only)."""

    api_key: str = Field(..., min_length=1)


# Hey future me - the key itself NEVER goes back over the wire. The UI only needs to know
# whether one is stored.
class RemoteKeyStatus(BaseModel):
    """Whether a remote API key is stored."""

    configured: bool
