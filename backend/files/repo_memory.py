"""
In-memory repository for course folders and files.

Why:
    Keeps the API usable for local development and tests without Postgres.
    Semantics mirror `DBFilesRepo`: course-scoped writes, unique names per
    parent (case-insensitive), and folder deletion only once the folder is
    empty (the service performs the cascade).
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union
from uuid import uuid4

from backend.files.domain import Course, CourseFile, Folder, StorageReference, sort_key
from backend.files.errors import FolderNotEmpty, InvalidName, NotFound


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryFilesRepo:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.courses: Dict[str, Course] = {}
        self.folders: Dict[str, Folder] = {}
        self.files: Dict[str, CourseFile] = {}
        # orphans[storage_key] = (reason, recorded_at)
        self.orphans: Dict[str, Tuple[str, str]] = {}

    # --- Courses (seeded by the course-management side) -------------------------

    def add_course(self, course_id: str, *, title: str, instructor_id: str, member_ids: Iterable[str] = ()) -> Course:
        course = Course(id=course_id, title=title, instructor_id=instructor_id, member_ids=frozenset(member_ids))
        with self._lock:
            self.courses[course_id] = course
        return course

    def add_member(self, course_id: str, student_id: str) -> None:
        with self._lock:
            course = self.courses[course_id]
            course.member_ids = course.member_ids | {student_id}

    def get_course(self, course_id: str) -> Optional[Course]:
        with self._lock:
            return self.courses.get(course_id)

    def is_member(self, course_id: str, user_id: str) -> bool:
        with self._lock:
            course = self.courses.get(course_id)
        return bool(course and user_id in course.member_ids)

    # --- Names ------------------------------------------------------------------

    def name_taken(self, course_id: str, parent_folder_id: Optional[str], name: str, *, kind: str) -> bool:
        wanted = name.casefold()
        pool: List[Union[Folder, CourseFile]]
        with self._lock:
            if kind == "folder":
                pool = [f for f in self.folders.values() if f.parent_folder_id == parent_folder_id]
            else:
                pool = [f for f in self.files.values() if f.folder_id == parent_folder_id]
        return any(item.course_id == course_id and item.name.casefold() == wanted for item in pool)

    def _check_parent(self, course_id: str, folder_id: Optional[str]) -> None:
        if course_id not in self.courses:
            raise NotFound("course_not_found")
        if folder_id is None:
            return
        folder = self.folders.get(folder_id)
        if folder is None or folder.course_id != course_id:
            raise NotFound("folder_not_found")

    # --- Folders ------------------------------------------------------------------

    def create_folder(self, course_id: str, *, name: str, parent_folder_id: Optional[str], created_by: str) -> Folder:
        with self._lock:
            self._check_parent(course_id, parent_folder_id)
            if self.name_taken(course_id, parent_folder_id, name, kind="folder"):
                raise InvalidName("duplicate_name")
            folder = Folder(
                id=str(uuid4()),
                course_id=course_id,
                name=name,
                parent_folder_id=parent_folder_id,
                created_by=created_by,
                created_at=_now(),
            )
            self.folders[folder.id] = folder
            return folder

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        with self._lock:
            return self.folders.get(folder_id)

    def delete_folder(self, folder_id: str) -> bool:
        with self._lock:
            if folder_id not in self.folders:
                return False
            has_children = any(f.parent_folder_id == folder_id for f in self.folders.values()) or any(
                f.folder_id == folder_id for f in self.files.values()
            )
            if has_children:
                raise FolderNotEmpty()
            del self.folders[folder_id]
            return True

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
        with self._lock:
            self._check_parent(course_id, folder_id)
            if self.name_taken(course_id, folder_id, name, kind="file"):
                raise InvalidName("duplicate_name")
            record = CourseFile(
                id=str(uuid4()),
                course_id=course_id,
                folder_id=folder_id,
                name=name,
                storage_key=reference.key,
                url=reference.url,
                content_type=reference.content_type,
                category=category,
                size_bytes=reference.size_bytes,
                uploader_id=uploader_id,
                created_at=_now(),
            )
            self.files[record.id] = record
            return record

    def get_file(self, file_id: str) -> Optional[CourseFile]:
        with self._lock:
            return self.files.get(file_id)

    def delete_file(self, file_id: str) -> Optional[CourseFile]:
        with self._lock:
            return self.files.pop(file_id, None)

    # --- Listing ------------------------------------------------------------------

    def list_contents(self, course_id: str, folder_id: Optional[str]) -> List[Union[Folder, CourseFile]]:
        with self._lock:
            items: List[Union[Folder, CourseFile]] = [
                f for f in self.folders.values() if f.course_id == course_id and f.parent_folder_id == folder_id
            ]
            items.extend(f for f in self.files.values() if f.course_id == course_id and f.folder_id == folder_id)
        items.sort(key=sort_key)
        return items

    def list_subtree(self, folder_id: str) -> Tuple[List[Folder], List[CourseFile]]:
        """Return (descendant folders deepest-first, files anywhere below `folder_id`)."""
        with self._lock:
            levels: List[List[Folder]] = []
            frontier = [folder_id]
            while frontier:
                children = [f for f in self.folders.values() if f.parent_folder_id in frontier]
                if not children:
                    break
                levels.append(children)
                frontier = [f.id for f in children]
            scope = {folder_id} | {f.id for level in levels for f in level}
            files = [f for f in self.files.values() if f.folder_id in scope]
        folders = [f for level in reversed(levels) for f in level]
        return folders, files

    # --- Orphans ------------------------------------------------------------------

    def record_orphan(self, storage_key: str, *, reason: str) -> None:
        with self._lock:
            self.orphans[storage_key] = (reason, _now())

    def list_orphans(self, limit: int = 100) -> List[str]:
        with self._lock:
            ordered = sorted(self.orphans.items(), key=lambda kv: kv[1][1])
        return [key for key, _ in ordered[: max(0, int(limit))]]

    def forget_orphan(self, storage_key: str) -> None:
        with self._lock:
            self.orphans.pop(storage_key, None)


__all__ = ["InMemoryFilesRepo"]
