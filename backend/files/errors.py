"""
Error taxonomy for course file management.

Why:
    The web adapter maps failures to HTTP responses by catching the builtin
    families (LookupError, PermissionError, ValueError, RuntimeError). Each
    typed error below subclasses one of them and carries a stable `code`
    string, so `str(exc)` stays a machine-readable detail.
"""
from __future__ import annotations


class FilesError(Exception):
    """Base class for all course-file errors."""

    code = "files_error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.code
        super().__init__(self.detail)


class NotFound(FilesError, LookupError):
    """Course, folder or file does not exist or is outside the caller's scope."""

    code = "not_found"


class Forbidden(FilesError, PermissionError):
    """Caller lacks rights to the course."""

    code = "forbidden"


class InvalidName(FilesError, ValueError):
    """Empty, malformed or duplicate-in-parent name."""

    code = "invalid_name"


class UnsupportedType(FilesError, ValueError):
    """Declared content type is outside the allow-list."""

    code = "unsupported_type"


class PayloadTooLarge(FilesError, ValueError):
    code = "size_exceeded"


class FolderNotEmpty(FilesError, RuntimeError):
    """Folder still holds children; raised by repositories on direct deletes."""

    code = "folder_not_empty"


class UploadError(FilesError, RuntimeError):
    """Media provider failure.

    `transient` marks failures worth retrying (network, timeouts, 5xx).
    """

    code = "upload_failed"

    def __init__(self, detail: str | None = None, *, transient: bool = False):
        super().__init__(detail)
        self.transient = transient


STORAGE_NOT_CONFIGURED = "storage_adapter_not_configured"


__all__ = [
    "FilesError",
    "NotFound",
    "Forbidden",
    "InvalidName",
    "UnsupportedType",
    "PayloadTooLarge",
    "UploadError",
    "FolderNotEmpty",
    "STORAGE_NOT_CONFIGURED",
]
