"""
Helpers to generate standardized storage_key paths for course media.

Why:
    Keep path shapes consistent and provide simple, testable sanitization that
    avoids path traversal and exotic characters while remaining
    human-readable.

Conventions:
    - Course files: course-files/{course}/{folder|root}/{uuid}.{ext}

Security:
    - Sanitization removes characters outside [A-Za-z0-9._-] from segments.
    - Filename extensions are lowercased and filtered to alphanumeric + dot.
"""
from __future__ import annotations

import os
import re
import unicodedata

_SEGMENT_RE = re.compile(r"[^A-Za-z0-9._-]+")

COURSE_FILES_PREFIX = "course-files"


def sanitize_segment(value: str, *, fallback: str = "x") -> str:
    value = value or ""
    normalized = unicodedata.normalize("NFKD", value)
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii")
    sanitized = _SEGMENT_RE.sub("-", ascii_value).strip("-_.")
    return sanitized or fallback


def sanitize_ext_from_filename(filename: str | None, default_ext: str = "") -> str:
    if not filename:
        ext = default_ext
    else:
        _, ext = os.path.splitext(os.path.basename(filename))
    ext = (ext or default_ext or "").lower()
    # keep only alnum and dots; collapse invalids
    ext = "".join(ch for ch in ext if ch.isalnum() or ch == ".")
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return ext


def make_course_file_key(*, course_id: str, folder_id: str | None, filename: str, uuid_hex: str) -> str:
    """Build a storage key for a course file.

    Returns: course-files/{course}/{folder|root}/{uuid}.{ext}
    """
    c = sanitize_segment(course_id, fallback="course")
    f = sanitize_segment(folder_id, fallback="root") if folder_id else "root"
    ext = sanitize_ext_from_filename(filename)
    hexpart = (uuid_hex or "").strip() or "file"
    return f"{COURSE_FILES_PREFIX}/{c}/{f}/{hexpart}{ext}"


__all__ = ["COURSE_FILES_PREFIX", "sanitize_segment", "sanitize_ext_from_filename", "make_course_file_key"]
