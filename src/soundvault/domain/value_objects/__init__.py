"""Domain value objects."""

from soundvault.domain.value_objects.audio_files import (
    AUDIO_EXTENSIONS,
    asset_class_from_path,
    asset_class_from_remote_key,
    build_library_filename,
    content_type_for,
    detect_asset_class,
    expand_library_path,
    is_audio_file,
    remote_key_for,
)

__all__ = [
    "AUDIO_EXTENSIONS",
    "asset_class_from_path",
    "asset_class_from_remote_key",
    "build_library_filename",
    "content_type_for",
    "detect_asset_class",
    "expand_library_path",
    "is_audio_file",
    "remote_key_for",
]
