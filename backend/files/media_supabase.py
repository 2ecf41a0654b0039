"""
Supabase-backed media adapter for course files.

This adapter implements MediaUploadAdapter using a provided Supabase client.
It is intentionally duck-typed to avoid a hard dependency during testing. The
client is expected to expose `.storage.from_(bucket)` (supabase-py) or
`.from_(bucket)` (storage3) which returns an object offering:

- upload(path, file, file_options) -> Any
- get_public_url(path) -> str
- remove([path]) -> Any

Security:
- The caller must ensure the client is initialized with the Service Role key.
- Uploaded objects are addressed by random keys; display names never reach
  the storage path except for the sanitized extension.
"""
from __future__ import annotations

import logging
from typing import Any, BinaryIO, Optional
from uuid import uuid4

import httpx

from backend.files.domain import StorageReference
from backend.files.errors import PayloadTooLarge, UploadError
from backend.files.media import MediaSettings
from backend.storage.keys import make_course_file_key

logger = logging.getLogger("studymate.files.media")

_READ_CHUNK = 1024 * 1024


def _is_transient(exc: BaseException) -> bool:
    """Network trouble and provider 5xx are worth a retry; the rest is not."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, ConnectionError, TimeoutError)):
        return True
    payload = exc.args[0] if exc.args else None
    if isinstance(payload, dict):
        status = payload.get("statusCode") or payload.get("status")
        try:
            return int(status) >= 500
        except (TypeError, ValueError):
            return False
    return False


class SupabaseMediaStore:
    """Media adapter using a supabase client for Storage operations."""

    def __init__(self, client: Any, settings: Optional[MediaSettings] = None):
        # Duck-typed supabase client, e.g., from `supabase import create_client(...)`.
        self._client = client
        self._settings = settings or MediaSettings()

    @property
    def settings(self) -> MediaSettings:
        return self._settings

    # --- Helpers -----------------------------------------------------------------

    def _bucket(self) -> Any:
        """Return a bucket proxy from either supabase client or storage3 client."""
        c = self._client
        storage = getattr(c, "storage", None)
        if storage is not None and hasattr(storage, "from_"):
            return storage.from_(self._settings.bucket)
        if hasattr(c, "from_"):
            return c.from_(self._settings.bucket)
        raise UploadError("invalid_supabase_client")

    def _read_limited(self, stream: BinaryIO) -> bytes:
        limit = self._settings.max_size_bytes
        chunks: list[bytes] = []
        total = 0
        while True:
            chunk = stream.read(_READ_CHUNK)
            if not chunk:
                break
            total += len(chunk)
            if total > limit:
                raise PayloadTooLarge()
            chunks.append(chunk)
        return b"".join(chunks)

    # --- Protocol methods --------------------------------------------------------

    def store(
        self,
        stream: BinaryIO,
        declared_name: str,
        declared_type: str,
        *,
        course_id: str = "",
        folder_id: str | None = None,
    ) -> StorageReference:
        media_type = self._settings.resolve_type(declared_type, declared_name)
        body = self._read_limited(stream)
        key = make_course_file_key(
            course_id=course_id,
            folder_id=folder_id,
            filename=f"file.{media_type.format}",
            uuid_hex=uuid4().hex,
        )
        bucket = self._bucket()
        # Some client versions expect file options with either kebab or camel case.
        opts = {"content-type": media_type.content_type, "contentType": media_type.content_type, "upsert": "false"}
        try:
            bucket.upload(key, body, opts)
        except Exception as exc:
            transient = _is_transient(exc)
            logger.warning(
                "Media upload failed key=%s transient=%s error=%s", key, transient, exc.__class__.__name__
            )
            raise UploadError("storage_upload_failed", transient=transient) from exc
        try:
            url = bucket.get_public_url(key)
            if isinstance(url, dict):
                url = url.get("publicURL") or url.get("publicUrl") or url.get("url") or ""
            url = str(url or "").rstrip("?")
            if not url:
                raise UploadError("storage_url_failed")
        except Exception as exc:
            transient = False if isinstance(exc, UploadError) else _is_transient(exc)
            logger.warning("Public URL lookup failed key=%s error=%s", key, exc.__class__.__name__)
            # No reference is returned, so the stored object is removed here.
            try:
                bucket.remove([key])
            except Exception as rm_exc:
                logger.warning("Removing unreferenced object failed key=%s error=%s", key, rm_exc.__class__.__name__)
            if isinstance(exc, UploadError):
                raise
            raise UploadError("storage_url_failed", transient=transient) from exc
        return StorageReference(
            key=key,
            url=url,
            size_bytes=len(body),
            content_type=media_type.content_type,
        )

    def remove(self, reference: StorageReference) -> None:
        bucket = self._bucket()
        # Keys are relative to the bucket
        norm_key = reference.key.lstrip("/")
        try:
            bucket.remove([norm_key])
        except Exception as exc:
            raise UploadError("storage_delete_failed", transient=_is_transient(exc)) from exc


__all__ = ["SupabaseMediaStore"]
