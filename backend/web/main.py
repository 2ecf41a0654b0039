"""
StudyMate web application: course files API.

Wiring happens in `create_app`: the repository and media adapter are built
once (or injected by tests) and handed to a `FileManagementService` stored on
`app.state`. No route reads module-level adapter state.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.files.media import MediaSettings, MediaUploadAdapter
from backend.files.repo_memory import InMemoryFilesRepo
from backend.files.service import FileManagementService, FilesRepoProtocol
from backend.identity_access.tokens import (
    TokenConfig,
    TokenVerificationError,
    roles_from_claims,
    subject_from_claims,
    verify_access_token,
)
from backend.web import config as _cfg
from backend.web.routes.files import files_router
from backend.web.storage_wiring import build_media_store

logger = logging.getLogger("studymate.web")


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via STUDYMATE_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("STUDYMATE_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


try:
    from dotenv import load_dotenv

    if _should_load_dotenv():
        load_dotenv()
except ImportError:
    pass


def _build_default_repo() -> FilesRepoProtocol:
    """Prefer the Postgres repo when a DSN is configured; else in-memory."""
    if not (os.getenv("FILES_DATABASE_URL") or os.getenv("DATABASE_URL")):
        return InMemoryFilesRepo()
    try:
        from backend.files.repo_db import DBFilesRepo

        return DBFilesRepo()
    except Exception as exc:  # pragma: no cover - exercised when psycopg missing
        logger.warning("Files repo unavailable (%s); using in-memory fallback", exc)
        return InMemoryFilesRepo()


def _is_public_path(path: str) -> bool:
    return path in ("/health", "/openapi.json", "/docs", "/docs/oauth2-redirect")


def _unauthenticated() -> JSONResponse:
    return JSONResponse(
        {"error": "unauthenticated"},
        status_code=401,
        headers={"Cache-Control": "private, no-store", "WWW-Authenticate": "Bearer"},
    )


def create_app(
    *,
    repo: Optional[FilesRepoProtocol] = None,
    media: Optional[MediaUploadAdapter] = None,
    settings: Optional[MediaSettings] = None,
    token_config: Optional[TokenConfig] = None,
) -> FastAPI:
    """Build the API with explicit collaborators.

    Parameters default to environment-driven construction; tests pass fakes.
    Refuses to build in prod-like environments with insecure configuration.
    """
    _cfg.ensure_secure_config_on_startup()
    settings = settings or MediaSettings.from_env()
    service = FileManagementService(
        repo=repo if repo is not None else _build_default_repo(),
        media=media if media is not None else build_media_store(settings),
        settings=settings,
    )
    tokens = token_config or TokenConfig.from_env()

    app = FastAPI(title="StudyMate course files", version="0.1.0")
    app.state.files_service = service
    app.state.token_config = tokens

    @app.middleware("http")
    async def auth_enforcement(request: Request, call_next):
        if _is_public_path(request.url.path):
            return await call_next(request)
        header = request.headers.get("authorization") or ""
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return _unauthenticated()
        try:
            claims = verify_access_token(token.strip(), request.app.state.token_config)
        except TokenVerificationError as exc:
            logger.info("Bearer token rejected: %s", exc.code)
            return _unauthenticated()
        sub = subject_from_claims(claims)
        if not sub:
            return _unauthenticated()
        roles = roles_from_claims(claims)
        request.state.user = {"sub": sub, "role": roles[0] if roles else None, "roles": roles}
        return await call_next(request)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        return response

    app.include_router(files_router)

    @app.get("/health")
    async def health_check():
        return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})

    return app


app = create_app()
