"""Audio file naming and classification rules.

Hey future me - these are PURE functions (no I/O except expand_library_path's home lookup).
Import pipeline, watcher and remote sync all agree on extension, asset class and remote key
rules through this module, so change them here and nowhere else.

Usage:
    from soundvault.domain.value_objects.audio_files import (
        is_audio_file,
        detect_asset_class,
        build_library_filename,
        remote_key_for,
    )
"""

import re
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from soundvault.domain.entities import AssetClass

# =============================================================================
# SUPPORTED FORMATS
# =============================================================================

AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {".mp3", ".wav", ".aiff", ".aif", ".flac", ".ogg", ".m4a", ".wma"}
)

# Content type sent along with uploads. Unknown extensions go as a generic binary blob.
AUDIO_CONTENT_TYPES: dict[str, str] = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".aiff": "audio/aiff",
    ".aif": "audio/aiff",
    ".flac": "audio/flac",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".wma": "audio/x-ms-wma",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# =============================================================================
# SFX HEURISTIC
# =============================================================================

# Substring match, case-insensitive. "hit" also matches "white_noise"; the user can
# flip the class afterwards.
SFX_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"sfx",
        r"sound.?effect",
        r"foley",
        r"whoosh",
        r"impact",
        r"hit",
        r"swoosh",
        r"click",
        r"beep",
        r"transition",
    )
)


def is_audio_file(path: str | Path) -> bool:
    """Check the extension against the supported audio container types."""
    return Path(path).suffix.lower() in AUDIO_EXTENSIONS


def detect_asset_class(filename: str) -> AssetClass:
    """Guess music vs sfx from the filename alone."""
    for pattern in SFX_PATTERNS:
        if pattern.search(filename):
            return AssetClass.SFX
    return AssetClass.MUSIC


def asset_class_from_path(path: str | Path) -> AssetClass:
    """Asset class for a file already inside the library.

    The immediate parent directory wins ("music/" or "sfx/"); anything else falls
    back to the filename heuristic.
    """
    path = Path(path)
    parent = path.parent.name.lower()
    for asset_class in AssetClass:
        if parent == asset_class.value:
            return asset_class
    return detect_asset_class(path.name)


def content_type_for(path: str | Path) -> str:
    """MIME type derived from the file extension."""
    return AUDIO_CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


def build_library_filename(source_name: str, now: datetime | None = None) -> str:
    """Collision-avoiding library name: ``<stem>_<epoch-ms><ext>``."""
    now = now or datetime.now(UTC)
    source = Path(source_name)
    return f"{source.stem}_{int(now.timestamp() * 1000)}{source.suffix}"


def expand_library_path(raw_path: str) -> Path:
    """Expand a leading ``~`` and return an absolute path."""
    return Path(raw_path).expanduser().resolve()


def remote_key_for(asset_class: AssetClass, library_filename: str) -> str:
    """Remote object key: ``<asset_class>/<library filename>``."""
    return f"{asset_class.value}/{library_filename}"


def asset_class_from_remote_key(remote_key: str) -> AssetClass:
    """Asset class encoded in the first key segment, heuristic as fallback."""
    key = PurePosixPath(remote_key)
    if len(key.parts) > 1:
        for asset_class in AssetClass:
            if key.parts[0] == asset_class.value:
                return asset_class
    return detect_asset_class(key.name)
