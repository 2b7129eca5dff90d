"""Blocking file analysis: content hash, size and duration.

Hey future me - everything here is SYNCHRONOUS and module-level so it pickles:
MetadataWorkerPool ships these functions to worker processes, and the
in-process fallback runs the very same functions in a thread. Never import asyncio
stuff or touch the database from this module.

Duration probing tries, in order:
1. ffprobe (ffmpeg) - most formats, most platforms
2. afinfo - ships with macOS
3. mutagen - in-process, no external binary needed
and settles for 0.0 when nothing can read the file.
"""

import hashlib
import logging
import re
import shutil
import subprocess
from pathlib import Path

from mutagen import File as MutagenFile  # type: ignore[attr-defined]

from soundvault.domain.entities import FileMetadata

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 64 * 1024
PROBE_TIMEOUT_SECONDS = 30

_AFINFO_DURATION = re.compile(r"duration:\s*([\d.]+)")


def compute_file_hash(file_path: str | Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Streaming SHA-1 of the file bytes (never loads the whole file).

    Raises:
        OSError: If the file can't be read
    """
    sha1 = hashlib.sha1()  # noqa: S324 - identity, not security
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha1.update(chunk)
    return sha1.hexdigest()


def get_file_size(file_path: str | Path) -> int:
    """Size in bytes. Raises OSError if the file is gone."""
    return Path(file_path).stat().st_size


def _probe_ffprobe(file_path: Path) -> float | None:
    if shutil.which("ffprobe") is None:
        return None
    try:
        completed = subprocess.run(  # noqa: S603
            [
                "ffprobe",
                "-v",
                "quiet",
                "-show_entries",
                "format=duration",
                "-of",
                "default=noprint_wrappers=1:nokey=1",
                str(file_path),
            ],
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"ffprobe failed for {file_path}: {e}")
        return None
    try:
        return float(completed.stdout.strip())
    except ValueError:
        return None


def _probe_afinfo(file_path: Path) -> float | None:
    if shutil.which("afinfo") is None:
        return None
    try:
        completed = subprocess.run(  # noqa: S603
            ["afinfo", str(file_path)],
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"afinfo failed for {file_path}: {e}")
        return None
    match = _AFINFO_DURATION.search(completed.stdout)
    return float(match.group(1)) if match else None


def _probe_mutagen(file_path: Path) -> float | None:
    try:
        audio = MutagenFile(file_path)
    except Exception as e:
        # mutagen raises its own MutagenError subclasses plus plain struct/value errors
        logger.debug(f"mutagen could not read {file_path}: {e}")
        return None
    if audio is None or not getattr(audio.info, "length", None):
        return None
    return float(audio.info.length)


def probe_duration(file_path: str | Path) -> float:
    """Duration in seconds, 0.0 when no probe succeeds."""
    path = Path(file_path)
    for probe in (_probe_ffprobe, _probe_afinfo, _probe_mutagen):
        duration = probe(path)
        if duration is not None and duration >= 0:
            return duration
    logger.warning(f"Could not determine duration for {path}")
    return 0.0


def analyze_file(file_path: str | Path, include_hash: bool = True) -> FileMetadata:
    """Hash, size and duration in one pass over the file.

    Args:
        file_path: File to analyze
        include_hash: False for probe-only requests (content_hash is then "")

    Returns:
        FileMetadata for the file

    Raises:
        OSError: If the file is missing or unreadable
    """
    size = get_file_size(file_path)
    content_hash = compute_file_hash(file_path) if include_hash else ""
    return FileMetadata(
        content_hash=content_hash,
        duration_seconds=probe_duration(file_path),
        size_bytes=size,
    )
