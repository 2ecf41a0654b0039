"""Entities for course folders and files.

Records are plain dataclasses so both repositories (in-memory and Postgres)
return the same shapes and the web adapter can serialize them with `asdict`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class StorageReference:
    """Opaque pointer to bytes held by the media provider."""

    key: str
    url: str
    size_bytes: int
    content_type: str


@dataclass
class Course:
    id: str
    title: str
    instructor_id: str
    member_ids: FrozenSet[str] = field(default_factory=frozenset)


@dataclass
class Folder:
    id: str
    course_id: str
    name: str
    parent_folder_id: Optional[str]
    created_by: str
    created_at: str
    kind: str = "folder"


@dataclass
class CourseFile:
    id: str
    course_id: str
    folder_id: Optional[str]
    name: str
    storage_key: str
    url: str
    content_type: str
    category: str
    size_bytes: int
    uploader_id: str
    created_at: str
    kind: str = "file"

    @property
    def reference(self) -> StorageReference:
        return StorageReference(
            key=self.storage_key,
            url=self.url,
            size_bytes=self.size_bytes,
            content_type=self.content_type,
        )


def sort_key(item: Folder | CourseFile) -> tuple:
    """Folders before files, then case-folded name, then creation time."""
    return (0 if item.kind == "folder" else 1, item.name.casefold(), item.created_at)


__all__ = ["StorageReference", "Course", "Folder", "CourseFile", "sort_key"]
