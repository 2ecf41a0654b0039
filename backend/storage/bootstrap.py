"""
Supabase Storage bootstrap for the course media bucket.

Intent:
    Create the media bucket on startup in dev/stage so uploads work after a
    fresh `supabase start` without manual setup.

Security & Safety:
    - Opt-in via `AUTO_CREATE_STORAGE_BUCKETS=true`.
    - Requires the server-side `SUPABASE_SERVICE_ROLE_KEY`.
    - Idempotent: the bucket is created only when the listing lacks it.
    - The bucket is public-read because course files are linked by URL.
"""
from __future__ import annotations

import inspect
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from backend.storage import config as storage_config

_log = logging.getLogger("studymate.storage")

_TIMEOUT = (3, 10)


def _env_flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() == "true"


def _supports_timeout(func) -> bool:
    """True if `func` accepts a `timeout` keyword (tests may patch in simple callables)."""
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    if any(p.kind is inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values()):
        return True
    return "timeout" in sig.parameters


def _call(method: str, url: str, **kwargs: Any) -> Any:
    func = getattr(requests, method)
    if _supports_timeout(func):
        kwargs["timeout"] = _TIMEOUT
    return func(url, **kwargs)


def _headers(key: str) -> Dict[str, str]:
    return {"apikey": key, "Authorization": f"Bearer {key}"}


def list_bucket_names(base_url: str, key: str) -> Optional[set]:
    """Return existing bucket names, or None when the listing failed."""
    url = f"{base_url.rstrip('/')}/storage/v1/bucket"
    try:
        resp = _call("get", url, headers=_headers(key))
    except requests.RequestException as exc:
        _log.warning("list buckets failed: error=%s", type(exc).__name__)
        return None
    status = getattr(resp, "status_code", 500)
    if status >= 300:
        _log.warning("list buckets failed: status=%s", status)
        return None
    try:
        data: List[Dict[str, Any]] = resp.json()
    except ValueError:
        return None
    if not isinstance(data, list):
        return None
    return {str(it.get("name") or it.get("id") or "") for it in data if isinstance(it, dict)}


def create_bucket(base_url: str, key: str, name: str, *, public: bool = True) -> bool:
    url = f"{base_url.rstrip('/')}/storage/v1/bucket"
    headers = {**_headers(key), "Content-Type": "application/json"}
    try:
        resp = _call("post", url, headers=headers, json={"id": name, "name": name, "public": public})
    except requests.RequestException as exc:
        _log.warning("create bucket '%s' failed: error=%s", name, type(exc).__name__)
        return False
    status = getattr(resp, "status_code", 500)
    if status >= 300:
        # 409 means someone else created it first
        if status == 409:
            return True
        _log.warning("create bucket '%s' failed: status=%s body=%s", name, status, getattr(resp, "text", ""))
        return False
    _log.info("created storage bucket '%s'", name)
    return True


def ensure_media_bucket(base_url: str, key: str, bucket: str) -> bool:
    """Ensure `bucket` exists; returns True when it exists afterwards."""
    names = list_bucket_names(base_url, key)
    if names is not None and bucket in names:
        return True
    return create_bucket(base_url, key, bucket)


def ensure_media_bucket_from_env() -> bool:
    """Create the configured media bucket when AUTO_CREATE_STORAGE_BUCKETS=true.

    Env:
        - AUTO_CREATE_STORAGE_BUCKETS=true (opt-in)
        - SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY
        - MEDIA_STORAGE_BUCKET (default: course-files)

    Returns False when disabled or credentials are missing.
    """
    if not _env_flag("AUTO_CREATE_STORAGE_BUCKETS"):
        return False
    _log.warning("AUTO_CREATE_STORAGE_BUCKETS=true detected (dev/test convenience only).")
    base = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not base or not key:
        return False
    return ensure_media_bucket(base, key, storage_config.get_media_bucket())


__all__ = ["ensure_media_bucket_from_env", "ensure_media_bucket", "list_bucket_names", "create_bucket"]
