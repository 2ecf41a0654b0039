"""
Construction of the media adapter from environment configuration.

Why:
    The media adapter is built once at app creation and injected into the
    file management service. Startup may happen before Supabase is reachable
    locally, so any failure here yields the Null adapter (uploads answer 503)
    instead of aborting the process.

Security:
    Requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY. Only server-side
    clients are built; no secrets reach HTTP clients or logs.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Optional
from urllib.parse import urlparse

from backend.files.media import MediaSettings, MediaUploadAdapter, NullMediaStore

logger = logging.getLogger("studymate.web")


def _is_local_host(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return host in {"127.0.0.1", "localhost", "host.docker.internal"}


def _storage3_client(url: str, key: str) -> Optional[Any]:
    """storage3 client for local `supabase start`, whose keys are not JWTs."""
    force = (os.getenv("SUPABASE_FALLBACK_STORAGE3", "false") or "").lower() == "true"
    if not force and not _is_local_host(url):
        return None
    try:
        from storage3 import SyncStorageClient  # type: ignore
    except ImportError as exc:
        logger.warning("storage3 client import failed: %s", exc.__class__.__name__)
        return None
    headers = {"Authorization": f"Bearer {key}", "apikey": key}
    return SyncStorageClient(f"{url.rstrip('/')}/storage/v1", headers)


def build_media_store(settings: Optional[MediaSettings] = None) -> MediaUploadAdapter:
    """Return a Supabase-backed adapter when configured, else the Null adapter."""
    settings = settings or MediaSettings.from_env()
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        logger.info("Media storage not configured; uploads disabled")
        return NullMediaStore()

    from backend.files.media_supabase import SupabaseMediaStore

    client: Optional[Any] = None
    try:
        from supabase import create_client  # type: ignore

        client = create_client(url, key)
    except Exception as exc:
        logger.warning("Supabase client unavailable: %s", exc.__class__.__name__)
        client = _storage3_client(url, key)
    if client is None:
        return NullMediaStore()

    logger.info("Media adapter wired: Supabase bucket=%s", settings.bucket)
    try:
        from backend.storage.bootstrap import ensure_media_bucket_from_env

        ensure_media_bucket_from_env()
    except Exception as exc:
        # Bucket bootstrap is a dev convenience; never block startup on it.
        logger.warning("Bucket bootstrap skipped: %s", exc.__class__.__name__)
    return SupabaseMediaStore(client, settings)


__all__ = ["build_media_store"]
