"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and keep every test independent of
the developer's shell environment (database DSNs, Supabase credentials,
token secrets), so the suite runs against in-memory collaborators unless a
test opts into something else.
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure the repo root and the tests directory are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = REPO_ROOT / "backend" / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

from utils.files_fakes import TEST_JWT_SECRET  # noqa: E402

_ENV_TOGGLES = (
    "STUDYMATE_ENV",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_FALLBACK_STORAGE3",
    "FILES_DATABASE_URL",
    "DATABASE_URL",
    "MEDIA_STORAGE_BUCKET",
    "MEDIA_MAX_UPLOAD_BYTES",
    "MEDIA_ALLOWED_CATEGORIES",
    "AUTO_CREATE_STORAGE_BUCKETS",
    "AUTH_JWT_ALGORITHMS",
    "AUTH_JWT_ISSUER",
    "AUTH_JWT_AUDIENCE",
    "STRICT_CSRF_FILES",
    "STUDYMATE_TRUST_PROXY",
)


def _isolate_env_defaults() -> None:
    """Clear deployment settings before `backend.web.main` is first imported.

    The module builds its default app at import time; without this, a shell
    with SUPABASE_URL or DATABASE_URL set would wire real services.
    """
    for var in _ENV_TOGGLES:
        os.environ.pop(var, None)
    os.environ["AUTH_JWT_SECRET"] = TEST_JWT_SECRET


_isolate_env_defaults()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Reset env-driven toggles per test; tests opt in explicitly."""
    for var in _ENV_TOGGLES:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AUTH_JWT_SECRET", TEST_JWT_SECRET)
    yield
