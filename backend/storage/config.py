"""
Centralized storage configuration for course media.

Intent:
    Provide a single source of truth for the media bucket name, upload size
    limit and accepted content categories, each with an environment-variable
    override. Prevents drift between the web wiring, the media adapter and the
    maintenance tools.

Behavior:
    - MEDIA_BUCKET_DEFAULT defines the canonical bucket ("course-files").
    - get_media_bucket() reads MEDIA_STORAGE_BUCKET with a sane fallback.
    - get_media_max_upload_bytes() reads MEDIA_MAX_UPLOAD_BYTES, clamped to the
      contract maximum.
    - get_media_allowed_categories() reads MEDIA_ALLOWED_CATEGORIES (comma list)
      and drops unknown names.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os
from typing import Tuple


MEDIA_BUCKET_DEFAULT = "course-files"
MEDIA_CATEGORIES: Tuple[str, ...] = ("document", "spreadsheet", "archive", "image", "video")


def get_media_bucket() -> str:
    """Return the configured media bucket name.

    Env:
        MEDIA_STORAGE_BUCKET – optional override; otherwise defaults to
        MEDIA_BUCKET_DEFAULT.
    """
    return (os.getenv("MEDIA_STORAGE_BUCKET") or MEDIA_BUCKET_DEFAULT).strip()


def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_media_max_upload_bytes() -> int:
    """Maximum upload size for course files (default/clamped 25 MiB)."""
    contract_max = 25 * 1024 * 1024
    return _parse_int_env("MEDIA_MAX_UPLOAD_BYTES", contract_max, contract_max=contract_max)


def get_media_allowed_categories() -> Tuple[str, ...]:
    """Accepted content categories; all known categories when unset."""
    raw = (os.getenv("MEDIA_ALLOWED_CATEGORIES") or "").strip()
    if not raw:
        return MEDIA_CATEGORIES
    wanted = {part.strip().lower() for part in raw.split(",") if part.strip()}
    selected = tuple(c for c in MEDIA_CATEGORIES if c in wanted)
    return selected or MEDIA_CATEGORIES


__all__ = [
    "MEDIA_BUCKET_DEFAULT",
    "MEDIA_CATEGORIES",
    "get_media_bucket",
    "get_media_max_upload_bytes",
    "get_media_allowed_categories",
]
