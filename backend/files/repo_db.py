"""
Postgres-backed repository for course folders and files.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection, so
  concurrent requests never share a connection or cursor.
- Returns the dataclasses from `backend.files.domain` to keep the service
  independent of the driver.
- Unique names per parent and same-course parents are enforced by the schema
  (see supabase/migrations/*_course_files.sql); violations are translated to
  the typed errors.
"""
from __future__ import annotations

import os
from typing import List, Optional, Tuple, Union
from uuid import UUID

from backend.files.domain import Course, CourseFile, Folder, StorageReference, sort_key
from backend.files.errors import FolderNotEmpty, InvalidName, NotFound

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False
    UniqueViolation = ForeignKeyViolation = None  # type: ignore
else:  # pragma: no cover - import errors handled above
    from psycopg.errors import ForeignKeyViolation, UniqueViolation


_TS = """to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')"""

_FOLDER_COLUMNS_SQL = f"""
    id::text,
    course_id::text,
    name,
    parent_folder_id::text,
    created_by,
    {_TS.format(col="created_at")}
"""

_FILE_COLUMNS_SQL = f"""
    id::text,
    course_id::text,
    folder_id::text,
    name,
    storage_key,
    url,
    content_type,
    category,
    size_bytes,
    uploader_id,
    {_TS.format(col="created_at")}
"""


def _dsn() -> str:
    for candidate in (os.getenv("FILES_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if candidate:
            return candidate
    raise RuntimeError("Database DSN unavailable for DBFilesRepo")


def _is_uuid_like(value: Optional[str]) -> bool:
    try:
        UUID(str(value))
    except (ValueError, TypeError):
        return False
    return True


def _fk_detail(exc: Exception) -> str:
    """Name the missing parent; the same-course trigger raises without a constraint."""
    diag = getattr(exc, "diag", None)
    constraint = (getattr(diag, "constraint_name", None) or "") if diag is not None else ""
    return "course_not_found" if constraint.endswith("course_id_fkey") else "folder_not_found"


def _folder_row(row: Tuple) -> Folder:
    return Folder(
        id=row[0],
        course_id=row[1],
        name=row[2],
        parent_folder_id=row[3],
        created_by=row[4],
        created_at=row[5],
    )


def _file_row(row: Tuple) -> CourseFile:
    return CourseFile(
        id=row[0],
        course_id=row[1],
        folder_id=row[2],
        name=row[3],
        storage_key=row[4],
        url=row[5],
        content_type=row[6],
        category=row[7],
        size_bytes=int(row[8]),
        uploader_id=row[9],
        created_at=row[10],
    )


class DBFilesRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBFilesRepo")
        self._dsn = dsn or _dsn()

    def _connect(self):
        return psycopg.connect(self._dsn)

    # --- Courses ----------------------------------------------------------------
    def get_course(self, course_id: str) -> Optional[Course]:
        if not _is_uuid_like(course_id):
            return None
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select id::text, title, teacher_id from public.courses where id = %s",
                    (course_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return Course(id=row[0], title=row[1] or "", instructor_id=row[2])

    def is_member(self, course_id: str, user_id: str) -> bool:
        if not _is_uuid_like(course_id):
            return False
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select 1 from public.course_memberships where course_id = %s and student_id = %s",
                    (course_id, user_id),
                )
                return cur.fetchone() is not None

    # --- Names ------------------------------------------------------------------
    def name_taken(self, course_id: str, parent_folder_id: Optional[str], name: str, *, kind: str) -> bool:
        if not _is_uuid_like(course_id):
            return False
        table, parent_col = (
            ("public.course_folders", "parent_folder_id") if kind == "folder" else ("public.course_files", "folder_id")
        )
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select 1 from {table}
                    where course_id = %s
                      and {parent_col} is not distinct from %s::uuid
                      and lower(name) = lower(%s)
                    """,
                    (course_id, parent_folder_id, name),
                )
                return cur.fetchone() is not None

    # --- Folders ----------------------------------------------------------------
    def create_folder(self, course_id: str, *, name: str, parent_folder_id: Optional[str], created_by: str) -> Folder:
        if not _is_uuid_like(course_id):
            raise NotFound("course_not_found")
        if parent_folder_id is not None and not _is_uuid_like(parent_folder_id):
            raise NotFound("folder_not_found")
        with self._connect() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        insert into public.course_folders (course_id, parent_folder_id, name, created_by)
                        values (%s, %s, %s, %s)
                        returning {_FOLDER_COLUMNS_SQL}
                        """,
                        (course_id, parent_folder_id, name, created_by),
                    )
                except UniqueViolation as exc:
                    raise InvalidName("duplicate_name") from exc
                except ForeignKeyViolation as exc:
                    raise NotFound(_fk_detail(exc)) from exc
                row = cur.fetchone()
                conn.commit()
        return _folder_row(row)

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        if not _is_uuid_like(folder_id):
            return None
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_FOLDER_COLUMNS_SQL} from public.course_folders where id = %s",
                    (folder_id,),
                )
                row = cur.fetchone()
        return _folder_row(row) if row else None

    def delete_folder(self, folder_id: str) -> bool:
        """Delete an empty folder; the schema refuses non-empty ones."""
        if not _is_uuid_like(folder_id):
            return False
        with self._connect() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute("delete from public.course_folders where id = %s", (folder_id,))
                except ForeignKeyViolation as exc:
                    conn.rollback()
                    raise FolderNotEmpty() from exc
                deleted = (cur.rowcount or 0) > 0
                conn.commit()
        return deleted

    # --- Files ------------------------------------------------------------------
    def create_file(
        self,
        course_id: str,
        *,
        folder_id: Optional[str],
        name: str,
        reference: StorageReference,
        category: str,
        uploader_id: str,
    ) -> CourseFile:
        if not _is_uuid_like(course_id):
            raise NotFound("course_not_found")
        with self._connect() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        insert into public.course_files
                            (course_id, folder_id, name, storage_key, url, content_type, category, size_bytes, uploader_id)
                        values (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                        returning {_FILE_COLUMNS_SQL}
                        """,
                        (
                            course_id,
                            folder_id,
                            name,
                            reference.key,
                            reference.url,
                            reference.content_type,
                            category,
                            int(reference.size_bytes),
                            uploader_id,
                        ),
                    )
                except UniqueViolation as exc:
                    raise InvalidName("duplicate_name") from exc
                except ForeignKeyViolation as exc:
                    raise NotFound(_fk_detail(exc)) from exc
                row = cur.fetchone()
                conn.commit()
        return _file_row(row)

    def get_file(self, file_id: str) -> Optional[CourseFile]:
        if not _is_uuid_like(file_id):
            return None
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"select {_FILE_COLUMNS_SQL} from public.course_files where id = %s", (file_id,))
                row = cur.fetchone()
        return _file_row(row) if row else None

    def delete_file(self, file_id: str) -> Optional[CourseFile]:
        if not _is_uuid_like(file_id):
            return None
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"delete from public.course_files where id = %s returning {_FILE_COLUMNS_SQL}",
                    (file_id,),
                )
                row = cur.fetchone()
                conn.commit()
        return _file_row(row) if row else None

    # --- Listing ----------------------------------------------------------------
    def list_contents(self, course_id: str, folder_id: Optional[str]) -> List[Union[Folder, CourseFile]]:
        if not _is_uuid_like(course_id):
            return []
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_FOLDER_COLUMNS_SQL} from public.course_folders
                    where course_id = %s and parent_folder_id is not distinct from %s::uuid
                    """,
                    (course_id, folder_id),
                )
                folders = [_folder_row(r) for r in cur.fetchall() or []]
                cur.execute(
                    f"""
                    select {_FILE_COLUMNS_SQL} from public.course_files
                    where course_id = %s and folder_id is not distinct from %s::uuid
                    """,
                    (course_id, folder_id),
                )
                files = [_file_row(r) for r in cur.fetchall() or []]
        items: List[Union[Folder, CourseFile]] = [*folders, *files]
        items.sort(key=sort_key)
        return items

    def list_subtree(self, folder_id: str) -> Tuple[List[Folder], List[CourseFile]]:
        """Return (descendant folders deepest-first, files anywhere below `folder_id`)."""
        if not _is_uuid_like(folder_id):
            return [], []
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    with recursive tree as (
                        select id, 0 as depth from public.course_folders where id = %s
                        union all
                        select f.id, t.depth + 1
                        from public.course_folders f
                        join tree t on f.parent_folder_id = t.id
                    )
                    select {_FOLDER_COLUMNS_SQL}
                    from public.course_folders
                    join tree using (id)
                    where tree.depth > 0
                    order by tree.depth desc, created_at
                    """,
                    (folder_id,),
                )
                folders = [_folder_row(r) for r in cur.fetchall() or []]
                scope = [folder_id, *(f.id for f in folders)]
                cur.execute(
                    f"select {_FILE_COLUMNS_SQL} from public.course_files where folder_id = any(%s::uuid[])",
                    (scope,),
                )
                files = [_file_row(r) for r in cur.fetchall() or []]
        return folders, files

    # --- Orphans ----------------------------------------------------------------
    def record_orphan(self, storage_key: str, *, reason: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.media_orphans (storage_key, reason)
                    values (%s, %s)
                    on conflict (storage_key) do update set reason = excluded.reason, recorded_at = now()
                    """,
                    (storage_key, reason),
                )
                conn.commit()

    def list_orphans(self, limit: int = 100) -> List[str]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select storage_key from public.media_orphans order by recorded_at limit %s",
                    (max(0, int(limit)),),
                )
                return [r[0] for r in cur.fetchall() or []]

    def forget_orphan(self, storage_key: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.media_orphans where storage_key = %s", (storage_key,))
                conn.commit()


__all__ = ["DBFilesRepo"]
