"""
Course files API: contract tests over ASGI.

Covers authentication (401), role and ownership checks (403), boundary
validation (400 with detail codes), error mapping (404/413/502/503) and the
happy paths for folders, uploads, listing and deletes. The app is built with
an in-memory repo and a recording media store.
"""
from __future__ import annotations

from typing import Any

import httpx
import pytest
from httpx import ASGITransport

from backend.files.errors import FolderNotEmpty, UploadError
from backend.files.media import MediaSettings, NullMediaStore
from backend.web.main import create_app

from utils.files_fakes import FlakyRepo, RecordingMediaStore, auth_headers, make_token

pytestmark = pytest.mark.anyio("asyncio")

OWNER = "user-42"
STUDENT = "student-7"
PDF = b"%PDF-1.4 fake"


@pytest.fixture
def repo() -> FlakyRepo:
    r = FlakyRepo()
    r.add_course("course-1", title="Databases", instructor_id=OWNER, member_ids=[STUDENT])
    r.add_course("course-2", title="Networks", instructor_id="other-teacher")
    return r


@pytest.fixture
def media() -> RecordingMediaStore:
    return RecordingMediaStore()


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test", headers={"Origin": "http://test"})


async def _create_folder(client, name: str = "Lecture Notes", **extra: Any) -> httpx.Response:
    body = {"course_id": "course-1", "name": name, **extra}
    return await client.post("/api/files/folder/create", json=body, headers=auth_headers(OWNER))


async def _upload(client, *, name="week1.pdf", ctype="application/pdf", body=PDF, folder_id=None, sub=OWNER):
    data = {"course_id": "course-1"}
    if folder_id:
        data["folder_id"] = folder_id
    return await client.post(
        "/api/files/upload",
        data=data,
        files={"file": (name, body, ctype)},
        headers=auth_headers(sub),
    )


async def test_health_is_public(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Basic abc"},
        {"Authorization": "Bearer not-a-jwt"},
        {"Authorization": f"Bearer {make_token(OWNER, secret='another-secret-another-secret-0000')}"},
        {"Authorization": f"Bearer {make_token(OWNER, ttl=-60)}"},
    ],
)
async def test_requests_without_valid_token_are_unauthenticated(repo, media, headers):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await client.get("/api/files/course-1", headers=headers)
    assert resp.status_code == 401
    assert resp.json() == {"error": "unauthenticated"}
    assert resp.headers["Cache-Control"] == "private, no-store"


async def test_worked_example_over_http(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        created = await _create_folder(client)
        assert created.status_code == 201
        folder = created.json()
        assert folder["name"] == "Lecture Notes"
        assert folder["course_id"] == "course-1"
        assert folder["parent_folder_id"] is None

        uploaded = await _upload(client, folder_id=folder["id"])
        assert uploaded.status_code == 201
        record = uploaded.json()
        assert record["name"] == "week1.pdf"
        assert record["folder_id"] == folder["id"]
        assert record["storage_key"]

        listing = await client.get(
            "/api/files/course-1", params={"folder_id": folder["id"]}, headers=auth_headers(OWNER)
        )
    assert listing.status_code == 200
    assert listing.headers["Cache-Control"] == "private, no-store"
    assert [i["id"] for i in listing.json()["items"]] == [record["id"]]


async def test_create_folder_rejects_unknown_fields(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await _create_folder(client, color="red")
    assert resp.status_code == 400
    assert resp.json() == {"error": "bad_request", "detail": "invalid_input"}


async def test_create_folder_missing_name_is_invalid_name(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await client.post(
            "/api/files/folder/create", json={"course_id": "course-1"}, headers=auth_headers(OWNER)
        )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "invalid_name"


async def test_create_folder_duplicate_and_invalid_names(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        assert (await _create_folder(client, "Labs")).status_code == 201
        dup = await _create_folder(client, "labs")
        bad = await _create_folder(client, "a/b")
    assert dup.status_code == 400 and dup.json()["detail"] == "duplicate_name"
    assert bad.status_code == 400 and bad.json()["detail"] == "invalid_name"


async def test_create_folder_requires_instructor_role(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await client.post(
            "/api/files/folder/create",
            json={"course_id": "course-1", "name": "X"},
            headers=auth_headers(STUDENT, roles=("student",)),
        )
    assert resp.status_code == 403


async def test_create_folder_in_foreign_course_is_forbidden(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await client.post(
            "/api/files/folder/create", json={"course_id": "course-2", "name": "X"}, headers=auth_headers(OWNER)
        )
    assert resp.status_code == 403


async def test_cross_origin_write_is_rejected(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await client.post(
            "/api/files/folder/create",
            json={"course_id": "course-1", "name": "X"},
            headers={**auth_headers(OWNER), "Origin": "http://evil.example"},
        )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "csrf_violation"
    assert repo.folders == {}


async def test_strict_csrf_requires_origin(repo, media, monkeypatch):
    monkeypatch.setenv("STRICT_CSRF_FILES", "true")
    app = create_app(repo=repo, media=media)
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.post(
            "/api/files/folder/create", json={"course_id": "course-1", "name": "X"}, headers=auth_headers(OWNER)
        )
    assert resp.status_code == 403


async def test_upload_unsupported_type_creates_nothing(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await _upload(client, name="setup.exe", ctype="application/x-msdownload")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "unsupported_type"
    assert media.stored == []
    assert repo.files == {}


async def test_upload_rejects_unknown_form_fields(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await client.post(
            "/api/files/upload",
            data={"course_id": "course-1", "public": "true"},
            files={"file": ("a.pdf", PDF, "application/pdf")},
            headers=auth_headers(OWNER),
        )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "invalid_input"
    assert media.stored == []


async def test_upload_without_file_part_is_rejected(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await client.post(
            "/api/files/upload",
            data={"course_id": "course-1", "file": "not-a-file"},
            files={"other": ("a.pdf", PDF, "application/pdf")},
            headers=auth_headers(OWNER),
        )
    assert resp.status_code == 400


async def test_upload_too_large_is_413(repo, media):
    app = create_app(repo=repo, media=media, settings=MediaSettings(max_size_bytes=4))
    async with _client(app) as client:
        resp = await _upload(client, body=b"0123456789")
    assert resp.status_code == 413
    assert resp.json()["detail"] == "size_exceeded"
    assert media.stored == []


async def test_upload_without_configured_storage_is_503(repo):
    async with _client(create_app(repo=repo, media=NullMediaStore())) as client:
        resp = await _upload(client)
    assert resp.status_code == 503
    assert repo.files == {}


@pytest.mark.parametrize("transient,status", [(True, 503), (False, 502)])
async def test_upload_provider_failures_map_to_gateway_errors(repo, media, transient, status):
    media.fail_store = UploadError("storage_upload_failed", transient=transient)
    async with _client(create_app(repo=repo, media=media)) as client:
        resp = await _upload(client)
    assert resp.status_code == status
    assert resp.json()["detail"] == "storage_upload_failed"


async def test_upload_record_failure_compensates(repo, media):
    repo.fail_create_file = RuntimeError("db_unavailable")
    app = create_app(repo=repo, media=media)
    async with httpx.AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
        headers={"Origin": "http://test"},
    ) as client:
        resp = await _upload(client)
    assert resp.status_code == 500
    assert media.removed == media.stored


async def test_listing_rules(repo, media):
    foreign = repo.create_folder("course-2", name="Theirs", parent_folder_id=None, created_by="other-teacher")
    async with _client(create_app(repo=repo, media=media)) as client:
        await _create_folder(client, "Week 1")
        as_student = await client.get("/api/files/course-1", headers=auth_headers(STUDENT, roles=("student",)))
        as_stranger = await client.get("/api/files/course-1", headers=auth_headers("nobody", roles=("student",)))
        cross = await client.get(
            "/api/files/course-1", params={"folder_id": foreign.id}, headers=auth_headers(OWNER)
        )
        unknown = await client.get("/api/files/course-404", headers=auth_headers(OWNER))
    assert as_student.status_code == 200
    assert [i["name"] for i in as_student.json()["items"]] == ["Week 1"]
    assert as_stranger.status_code == 403
    assert cross.status_code == 404
    assert unknown.status_code == 404


async def test_delete_file_twice(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        record = (await _upload(client)).json()
        first = await client.delete(f"/api/files/{record['id']}", headers=auth_headers(OWNER))
        second = await client.delete(f"/api/files/{record['id']}", headers=auth_headers(OWNER))
    assert first.status_code == 204
    assert first.content == b""
    assert second.status_code == 404
    assert [r.key for r in media.removed] == [record["storage_key"]]


async def test_delete_folder_cascades(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        top = (await _create_folder(client, "Week 1")).json()
        sub = (await _create_folder(client, "Slides", parent_folder_id=top["id"])).json()
        await _upload(client, folder_id=sub["id"])
        resp = await client.delete(f"/api/files/folder/{top['id']}", headers=auth_headers(OWNER))
        after = await client.get("/api/files/course-1", params={"folder_id": top["id"]}, headers=auth_headers(OWNER))
        again = await client.delete(f"/api/files/folder/{top['id']}", headers=auth_headers(OWNER))
    assert resp.status_code == 204
    assert repo.folders == {}
    assert repo.files == {}
    assert after.status_code == 404
    assert again.status_code == 404


async def test_delete_requires_instructor_role(repo, media):
    async with _client(create_app(repo=repo, media=media)) as client:
        record = (await _upload(client)).json()
        resp = await client.delete(
            f"/api/files/{record['id']}", headers=auth_headers(STUDENT, roles=("student",))
        )
    assert resp.status_code == 403
    assert repo.get_file(record["id"]) is not None


async def test_delete_folder_that_keeps_filling_is_409(repo, media):
    class _AlwaysBusyRepo(FlakyRepo):
        def delete_folder(self, folder_id):
            raise FolderNotEmpty()

    busy = _AlwaysBusyRepo()
    busy.add_course("course-1", title="Databases", instructor_id=OWNER)
    async with _client(create_app(repo=busy, media=media)) as client:
        folder = (await _create_folder(client, "Week 1")).json()
        resp = await client.delete(f"/api/files/folder/{folder['id']}", headers=auth_headers(OWNER))
    assert resp.status_code == 409
    assert resp.json() == {"error": "conflict", "detail": "folder_not_empty"}
    assert resp.headers["Cache-Control"] == "private, no-store"
