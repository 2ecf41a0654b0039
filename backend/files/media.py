"""Media upload adapter interface for course files."""
from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Dict, Optional, Protocol, Tuple

from backend.files.domain import StorageReference
from backend.files.errors import STORAGE_NOT_CONFIGURED, UnsupportedType, UploadError
from backend.storage import config as storage_config


# format -> (category, canonical MIME type)
_FORMATS: Dict[str, Tuple[str, str]] = {
    "pdf": ("document", "application/pdf"),
    "doc": ("document", "application/msword"),
    "docx": ("document", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
    "txt": ("document", "text/plain"),
    "md": ("document", "text/markdown"),
    "rtf": ("document", "application/rtf"),
    "odt": ("document", "application/vnd.oasis.opendocument.text"),
    "ppt": ("document", "application/vnd.ms-powerpoint"),
    "pptx": ("document", "application/vnd.openxmlformats-officedocument.presentationml.presentation"),
    "sql": ("document", "application/sql"),
    "xls": ("spreadsheet", "application/vnd.ms-excel"),
    "xlsx": ("spreadsheet", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
    "csv": ("spreadsheet", "text/csv"),
    "ods": ("spreadsheet", "application/vnd.oasis.opendocument.spreadsheet"),
    "zip": ("archive", "application/zip"),
    "tar": ("archive", "application/x-tar"),
    "gz": ("archive", "application/gzip"),
    "tgz": ("archive", "application/gzip"),
    "7z": ("archive", "application/x-7z-compressed"),
    "jpg": ("image", "image/jpeg"),
    "jpeg": ("image", "image/jpeg"),
    "png": ("image", "image/png"),
    "gif": ("image", "image/gif"),
    "webp": ("image", "image/webp"),
    "mp4": ("video", "video/mp4"),
    "webm": ("video", "video/webm"),
    "mov": ("video", "video/quicktime"),
}

_MIME_TO_FORMAT: Dict[str, str] = {}
for _fmt, (_, _mime) in _FORMATS.items():
    _MIME_TO_FORMAT.setdefault(_mime, _fmt)
_MIME_TO_FORMAT.update(
    {
        "application/x-zip-compressed": "zip",
        "application/x-gzip": "gz",
        "image/jpg": "jpg",
        "text/x-sql": "sql",
        "application/csv": "csv",
    }
)

# Browsers send these when they cannot tell; fall back to the filename.
GENERIC_CONTENT_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})


@dataclass(frozen=True)
class MediaType:
    format: str
    category: str
    content_type: str


def classify_content_type(declared_type: str) -> Optional[MediaType]:
    """Resolve a format (`pdf`, `.pdf`) or MIME type to its media type.

    Returns None for anything outside the known table.
    """
    value = (declared_type or "").split(";", 1)[0].strip().lower()
    if not value:
        return None
    fmt = _MIME_TO_FORMAT.get(value) if "/" in value else value.lstrip(".")
    entry = _FORMATS.get(fmt or "")
    if entry is None:
        return None
    return MediaType(format=fmt, category=entry[0], content_type=entry[1])


@dataclass
class MediaSettings:
    """Configuration for course media uploads."""

    bucket: str = storage_config.MEDIA_BUCKET_DEFAULT
    allowed_categories: Tuple[str, ...] = storage_config.MEDIA_CATEGORIES
    max_size_bytes: int = 25 * 1024 * 1024

    @classmethod
    def from_env(cls) -> "MediaSettings":
        return cls(
            bucket=storage_config.get_media_bucket(),
            allowed_categories=storage_config.get_media_allowed_categories(),
            max_size_bytes=storage_config.get_media_max_upload_bytes(),
        )

    def resolve_type(self, declared_type: str, declared_name: str = "") -> MediaType:
        """Return the accepted media type or raise UnsupportedType."""
        normalized = (declared_type or "").split(";", 1)[0].strip().lower()
        candidate = normalized
        if normalized in GENERIC_CONTENT_TYPES and "." in (declared_name or ""):
            candidate = declared_name.rsplit(".", 1)[-1]
        media_type = classify_content_type(candidate)
        if media_type is None or media_type.category not in self.allowed_categories:
            raise UnsupportedType()
        return media_type


class MediaUploadAdapter(Protocol):
    """Protocol describing the remote media store used for course files.

    `store` is not idempotent: a retry after a network failure may leave a
    second remote object behind. Callers must treat any reference they did
    not commit to the repository as garbage.
    """

    def store(
        self,
        stream: BinaryIO,
        declared_name: str,
        declared_type: str,
        *,
        course_id: str = "",
        folder_id: Optional[str] = None,
    ) -> StorageReference: ...

    def remove(self, reference: StorageReference) -> None: ...


class NullMediaStore:
    """Fallback adapter that signals the media backend is not configured."""

    def store(
        self,
        stream: BinaryIO,
        declared_name: str,
        declared_type: str,
        *,
        course_id: str = "",
        folder_id: Optional[str] = None,
    ) -> StorageReference:  # noqa: D401
        raise UploadError(STORAGE_NOT_CONFIGURED)

    def remove(self, reference: StorageReference) -> None:  # noqa: D401
        raise UploadError(STORAGE_NOT_CONFIGURED)


__all__ = [
    "MediaType",
    "MediaSettings",
    "MediaUploadAdapter",
    "NullMediaStore",
    "classify_content_type",
    "GENERIC_CONTENT_TYPES",
]
