"""
Media type allow-list: classification and settings.

Expected:
  - Formats, dotted extensions and MIME types (with parameters) resolve to
    the same media type.
  - Generic browser types fall back to the filename extension.
  - Unknown types and disallowed categories raise UnsupportedType.
"""
from __future__ import annotations

import pytest

from backend.files.errors import UnsupportedType
from backend.files.media import MediaSettings, classify_content_type


@pytest.mark.parametrize("declared", ["pdf", ".PDF", "application/pdf", "application/pdf; charset=binary"])
def test_classify_pdf_variants(declared):
    media_type = classify_content_type(declared)
    assert media_type is not None
    assert (media_type.format, media_type.category, media_type.content_type) == (
        "pdf",
        "document",
        "application/pdf",
    )


@pytest.mark.parametrize(
    "declared,category",
    [
        ("text/csv", "spreadsheet"),
        ("application/x-zip-compressed", "archive"),
        ("tgz", "archive"),
        ("image/jpg", "image"),
        ("video/quicktime", "video"),
        ("sql", "document"),
    ],
)
def test_classify_categories(declared, category):
    assert classify_content_type(declared).category == category


@pytest.mark.parametrize("declared", ["", "exe", "application/x-msdownload", "text/html", "application/octet-stream"])
def test_classify_unknown_returns_none(declared):
    assert classify_content_type(declared) is None


def test_resolve_type_uses_extension_for_generic_types():
    settings = MediaSettings()
    assert settings.resolve_type("application/octet-stream", "notes.md").format == "md"
    assert settings.resolve_type("", "photo.JPEG").category == "image"


def test_resolve_type_rejects_disallowed_category():
    settings = MediaSettings(allowed_categories=("document", "image"))
    with pytest.raises(UnsupportedType):
        settings.resolve_type("video/mp4", "clip.mp4")


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("MEDIA_STORAGE_BUCKET", "uploads")
    monkeypatch.setenv("MEDIA_MAX_UPLOAD_BYTES", "1024")
    monkeypatch.setenv("MEDIA_ALLOWED_CATEGORIES", "image, document, bogus")
    settings = MediaSettings.from_env()
    assert settings.bucket == "uploads"
    assert settings.max_size_bytes == 1024
    assert settings.allowed_categories == ("document", "image")
