"""
Course files API routes (folders and files of a course).

Why:
    Thin HTTP adapter around `FileManagementService`. Authentication is done by
    the middleware in `backend.web.main`; this module enforces the write role,
    the same-origin guard, boundary validation of request bodies and the
    mapping of typed service errors to status codes.

Notes:
    - The service is synchronous (psycopg, Supabase client) and runs in a worker
      thread. If the client disconnects mid-upload the thread still finishes,
      so the upload either commits or is compensated.
    - All responses carry `Cache-Control: private, no-store`: listings are
      course-scoped and must not land in shared caches.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from starlette.datastructures import UploadFile

from backend.files.errors import (
    STORAGE_NOT_CONFIGURED,
    FolderNotEmpty,
    Forbidden,
    InvalidName,
    NotFound,
    PayloadTooLarge,
    UnsupportedType,
    UploadError,
)
from backend.files.service import FileManagementService
from backend.identity_access.domain import WRITE_ROLES

from .security import csrf_ok

files_router = APIRouter(tags=["Files"])
logger = logging.getLogger("studymate.web.files")

_PRIVATE = {"Cache-Control": "private, no-store"}
_UPLOAD_FIELDS = frozenset({"file", "course_id", "folder_id"})


# --- Request models ----------------------------------------------------------------


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class FolderCreatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    course_id: str = Field(..., min_length=1)
    name: str
    parent_folder_id: Optional[str] = None

    @field_validator("parent_folder_id", mode="before")
    @classmethod
    def _strip_parent(cls, v):
        return _blank_to_none(v)


class UploadForm(BaseModel):
    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    file: UploadFile
    course_id: str = Field(..., min_length=1)
    folder_id: Optional[str] = None

    @field_validator("folder_id", mode="before")
    @classmethod
    def _strip_folder(cls, v):
        return _blank_to_none(v)


# --- Helpers -----------------------------------------------------------------------


def _json_private(payload: Any, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=payload, status_code=status_code, headers=dict(_PRIVATE))


def _private_error(error: str, *, status_code: int, detail: Optional[str] = None) -> JSONResponse:
    payload = {"error": error}
    if detail:
        payload["detail"] = detail
    return _json_private(payload, status_code=status_code)


def _service(request: Request) -> FileManagementService:
    return request.app.state.files_service


def _current_sub(request: Request) -> str:
    user = getattr(request.state, "user", None) or {}
    sub = user.get("sub")
    return str(sub) if sub else ""


def _require_instructor(request: Request) -> Optional[JSONResponse]:
    user = getattr(request.state, "user", None) or {}
    roles = user.get("roles") or []
    if not isinstance(roles, list) or not WRITE_ROLES.intersection(roles):
        return _private_error("forbidden", status_code=403)
    return None


def _guard_write(request: Request) -> Optional[JSONResponse]:
    denied = _require_instructor(request)
    if denied:
        return denied
    if not csrf_ok(request):
        return _private_error("forbidden", status_code=403, detail="csrf_violation")
    return None


def _validation_detail(exc: ValidationError) -> str:
    fields = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
    return "invalid_name" if "name" in fields else "invalid_input"


def _error_response(exc: Exception) -> JSONResponse:
    """Map typed service errors to HTTP responses; anything else propagates (500)."""
    if isinstance(exc, NotFound):
        return _private_error("not_found", status_code=404, detail=exc.detail)
    if isinstance(exc, Forbidden):
        return _private_error("forbidden", status_code=403)
    if isinstance(exc, PayloadTooLarge):
        return _private_error("payload_too_large", status_code=413, detail="size_exceeded")
    if isinstance(exc, InvalidName):
        return _private_error("bad_request", status_code=400, detail=exc.detail)
    if isinstance(exc, UnsupportedType):
        return _private_error("bad_request", status_code=400, detail="unsupported_type")
    if isinstance(exc, FolderNotEmpty):
        return _private_error("conflict", status_code=409, detail=exc.detail)
    if isinstance(exc, UploadError):
        if exc.transient or exc.detail == STORAGE_NOT_CONFIGURED:
            return _private_error("service_unavailable", status_code=503, detail=exc.detail)
        return _private_error("bad_gateway", status_code=502, detail=exc.detail)
    raise exc


_SERVICE_ERRORS = (NotFound, Forbidden, InvalidName, UnsupportedType, PayloadTooLarge, FolderNotEmpty, UploadError)


def _serialize(item: Any) -> dict:
    return asdict(item)


# --- Routes ------------------------------------------------------------------------


@files_router.post("/api/files/folder/create")
async def create_folder(request: Request):
    """Create a folder in a course (owning instructor only).

    Body: `{course_id, name, parent_folder_id?}`; unknown fields yield 400.
    Returns 201 with the folder.
    """
    denied = _guard_write(request)
    if denied:
        return denied
    try:
        body = await request.json()
    except ValueError:
        return _private_error("bad_request", status_code=400, detail="invalid_input")
    if not isinstance(body, dict):
        return _private_error("bad_request", status_code=400, detail="invalid_input")
    try:
        payload = FolderCreatePayload.model_validate(body)
    except ValidationError as exc:
        return _private_error("bad_request", status_code=400, detail=_validation_detail(exc))
    try:
        folder = await asyncio.to_thread(
            _service(request).create_folder,
            payload.course_id,
            payload.name,
            payload.parent_folder_id,
            actor_id=_current_sub(request),
        )
    except _SERVICE_ERRORS as exc:
        return _error_response(exc)
    return _json_private(_serialize(folder), status_code=201)


@files_router.post("/api/files/upload")
async def upload_file(request: Request):
    """Upload a file into a course folder (owning instructor only).

    Multipart form: `file`, `course_id`, optional `folder_id`. The declared
    content type is the part's Content-Type; generic types fall back to the
    filename extension.
    """
    denied = _guard_write(request)
    if denied:
        return denied
    try:
        form = await request.form()
    except Exception:
        return _private_error("bad_request", status_code=400, detail="invalid_input")
    try:
        keys = set(form.keys())
        if not keys.issubset(_UPLOAD_FIELDS) or len(form.getlist("file")) != 1:
            return _private_error("bad_request", status_code=400, detail="invalid_input")
        try:
            data = UploadForm.model_validate({k: form.get(k) for k in keys})
        except ValidationError as exc:
            return _private_error("bad_request", status_code=400, detail=_validation_detail(exc))
        upload = data.file
        try:
            record = await asyncio.to_thread(
                _service(request).upload_file,
                data.course_id,
                data.folder_id,
                upload.file,
                upload.filename or "",
                upload.content_type or "",
                _current_sub(request),
                size_bytes=upload.size,
            )
        except _SERVICE_ERRORS as exc:
            return _error_response(exc)
    finally:
        await form.close()
    return _json_private(_serialize(record), status_code=201)


@files_router.get("/api/files/{course_id}")
async def list_files_and_folders(request: Request, course_id: str, folder_id: Optional[str] = None):
    """List the direct children of a course root or folder.

    Readable by the owning instructor and enrolled students. A `folder_id` of
    another course yields 404, never an empty list.
    """
    try:
        items = await asyncio.to_thread(
            _service(request).list_files_and_folders,
            course_id,
            _blank_to_none(folder_id),
            actor_id=_current_sub(request),
        )
    except _SERVICE_ERRORS as exc:
        return _error_response(exc)
    return _json_private({"items": [_serialize(item) for item in items]})


@files_router.delete("/api/files/folder/{folder_id}")
async def delete_folder(request: Request, folder_id: str):
    """Delete a folder with all folders and files below it (204)."""
    denied = _guard_write(request)
    if denied:
        return denied
    try:
        await asyncio.to_thread(_service(request).delete_folder, folder_id, actor_id=_current_sub(request))
    except _SERVICE_ERRORS as exc:
        return _error_response(exc)
    return Response(status_code=204, headers=dict(_PRIVATE))


@files_router.delete("/api/files/{file_id}")
async def delete_file(request: Request, file_id: str):
    denied = _guard_write(request)
    if denied:
        return denied
    try:
        await asyncio.to_thread(_service(request).delete_file, file_id, actor_id=_current_sub(request))
    except _SERVICE_ERRORS as exc:
        return _error_response(exc)
    return Response(status_code=204, headers=dict(_PRIVATE))


__all__ = ["files_router", "FolderCreatePayload", "UploadForm"]
