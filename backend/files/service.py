"""Course file management service layer."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional, Protocol, Tuple, Union

from backend.files.domain import Course, CourseFile, Folder, StorageReference
from backend.files.errors import FolderNotEmpty, Forbidden, InvalidName, NotFound, PayloadTooLarge, UploadError
from backend.files.media import MediaSettings, MediaUploadAdapter

logger = logging.getLogger("studymate.files")

FOLDER_NAME_MAX = 120
FILE_NAME_MAX = 255
_FORBIDDEN_NAME_CHARS = ("/", "\\")
# Subtree scans per folder delete; items inserted concurrently trigger a rescan.
_CASCADE_PASSES = 3


class FilesRepoProtocol(Protocol):
    """Repository contract expected by the file management service."""

    def get_course(self, course_id: str) -> Optional[Course]: ...

    def is_member(self, course_id: str, user_id: str) -> bool: ...

    def name_taken(self, course_id: str, parent_folder_id: Optional[str], name: str, *, kind: str) -> bool: ...

    def create_folder(
        self, course_id: str, *, name: str, parent_folder_id: Optional[str], created_by: str
    ) -> Folder: ...

    def get_folder(self, folder_id: str) -> Optional[Folder]: ...

    def delete_folder(self, folder_id: str) -> bool: ...

    def create_file(
        self,
        course_id: str,
        *,
        folder_id: Optional[str],
        name: str,
        reference: StorageReference,
        category: str,
        uploader_id: str,
    ) -> CourseFile: ...

    def get_file(self, file_id: str) -> Optional[CourseFile]: ...

    def delete_file(self, file_id: str) -> Optional[CourseFile]: ...

    def list_contents(self, course_id: str, folder_id: Optional[str]) -> List[Union[Folder, CourseFile]]: ...

    def list_subtree(self, folder_id: str) -> Tuple[List[Folder], List[CourseFile]]: ...

    def record_orphan(self, storage_key: str, *, reason: str) -> None: ...

    def list_orphans(self, limit: int = 100) -> List[str]: ...

    def forget_orphan(self, storage_key: str) -> None: ...


def _clean_name(name: str, *, max_length: int) -> str:
    cleaned = (name or "").strip()
    if not cleaned or len(cleaned) > max_length:
        raise InvalidName()
    if any(ch in cleaned for ch in _FORBIDDEN_NAME_CHARS) or cleaned in (".", ".."):
        raise InvalidName()
    if any(ord(ch) < 32 for ch in cleaned):
        raise InvalidName()
    return cleaned


@dataclass
class FileManagementService:
    """Folder and file use cases for a course, independent of web adapters.

    Writes are reserved for the instructor owning the course; reads are open
    to the owner and enrolled students. The media adapter is injected, so the
    service never touches provider configuration.
    """

    repo: FilesRepoProtocol
    media: MediaUploadAdapter
    settings: MediaSettings = field(default_factory=MediaSettings)

    # --- Access ---------------------------------------------------------------

    def _course(self, course_id: str) -> Course:
        course = self.repo.get_course(course_id)
        if course is None:
            raise NotFound("course_not_found")
        return course

    def _require_owner(self, course: Course, actor_id: str) -> None:
        if not actor_id or course.instructor_id != actor_id:
            raise Forbidden("not_course_owner")

    def _require_reader(self, course: Course, actor_id: str) -> None:
        if actor_id and course.instructor_id == actor_id:
            return
        if actor_id and self.repo.is_member(course.id, actor_id):
            return
        raise Forbidden("not_course_member")

    def _folder_in_course(self, course_id: str, folder_id: Optional[str]) -> Optional[Folder]:
        if folder_id is None:
            return None
        folder = self.repo.get_folder(folder_id)
        if folder is None or folder.course_id != course_id:
            raise NotFound("folder_not_found")
        return folder

    # --- Folders --------------------------------------------------------------

    def create_folder(
        self,
        course_id: str,
        name: str,
        parent_folder_id: Optional[str] = None,
        *,
        actor_id: str,
    ) -> Folder:
        cleaned = _clean_name(name, max_length=FOLDER_NAME_MAX)
        course = self._course(course_id)
        self._require_owner(course, actor_id)
        self._folder_in_course(course_id, parent_folder_id)
        if self.repo.name_taken(course_id, parent_folder_id, cleaned, kind="folder"):
            raise InvalidName("duplicate_name")
        folder = self.repo.create_folder(
            course_id, name=cleaned, parent_folder_id=parent_folder_id, created_by=actor_id
        )
        logger.info("Folder created course=%s folder=%s", course_id, folder.id)
        return folder

    def delete_folder(self, folder_id: str, *, actor_id: str) -> None:
        """Delete a folder and everything below it.

        Files go first (record, then best-effort remote removal), then the
        descendant folders deepest-first, the target last. Items that vanished
        in between are skipped, so a retry after a partial failure finishes
        the remainder.
        """
        folder = self.repo.get_folder(folder_id)
        if folder is None:
            raise NotFound("folder_not_found")
        self._require_owner(self._course(folder.course_id), actor_id)

        file_count = folder_count = 0
        for attempt in range(1, _CASCADE_PASSES + 1):
            folders, files = self.repo.list_subtree(folder_id)
            try:
                removed_files, removed_folders = self._delete_subtree(folder_id, folders, files)
                file_count += removed_files
                folder_count += removed_folders
                break
            except FolderNotEmpty:
                if attempt == _CASCADE_PASSES:
                    raise
                logger.info("Folder changed during delete, rescanning folder=%s attempt=%s", folder_id, attempt)
        logger.info(
            "Folder deleted course=%s folder=%s files=%s subfolders=%s",
            folder.course_id,
            folder_id,
            file_count,
            folder_count,
        )

    def _delete_subtree(
        self, folder_id: str, folders: List[Folder], files: List[CourseFile]
    ) -> Tuple[int, int]:
        removed_files = removed_folders = 0
        for record in files:
            removed = self.repo.delete_file(record.id)
            if removed is not None:
                removed_files += 1
                self._discard_remote(removed.reference, reason="folder_delete")
        for child in folders:
            if self.repo.delete_folder(child.id):
                removed_folders += 1
        if not self.repo.delete_folder(folder_id):
            raise NotFound("folder_not_found")
        return removed_files, removed_folders

    # --- Files ----------------------------------------------------------------

    def upload_file(
        self,
        course_id: str,
        folder_id: Optional[str],
        stream: BinaryIO,
        declared_name: str,
        declared_type: str,
        uploader_id: str,
        *,
        size_bytes: Optional[int] = None,
    ) -> CourseFile:
        """Store the bytes remotely, then persist the record.

        Everything that can be checked locally is checked before the remote
        call. If persisting fails the stored object is removed again; a failed
        removal is recorded as an orphan and the original error propagates.
        """
        cleaned = _clean_name(declared_name, max_length=FILE_NAME_MAX)
        course = self._course(course_id)
        self._require_owner(course, uploader_id)
        self._folder_in_course(course_id, folder_id)
        media_type = self.settings.resolve_type(declared_type, cleaned)
        if size_bytes is not None and size_bytes > self.settings.max_size_bytes:
            raise PayloadTooLarge()
        if self.repo.name_taken(course_id, folder_id, cleaned, kind="file"):
            raise InvalidName("duplicate_name")

        reference = self.media.store(
            stream,
            cleaned,
            media_type.content_type,
            course_id=course_id,
            folder_id=folder_id,
        )
        try:
            record = self.repo.create_file(
                course_id,
                folder_id=folder_id,
                name=cleaned,
                reference=reference,
                category=media_type.category,
                uploader_id=uploader_id,
            )
        except BaseException:
            self._compensate_store(reference)
            raise
        logger.info(
            "File uploaded course=%s file=%s category=%s size=%s",
            course_id,
            record.id,
            record.category,
            record.size_bytes,
        )
        return record

    def delete_file(self, file_id: str, *, actor_id: str) -> None:
        record = self.repo.get_file(file_id)
        if record is None:
            raise NotFound("file_not_found")
        self._require_owner(self._course(record.course_id), actor_id)
        removed = self.repo.delete_file(file_id)
        if removed is None:
            raise NotFound("file_not_found")
        self._discard_remote(removed.reference, reason="file_delete")
        logger.info("File deleted course=%s file=%s", removed.course_id, file_id)

    # --- Listing --------------------------------------------------------------

    def list_files_and_folders(
        self,
        course_id: str,
        folder_id: Optional[str] = None,
        *,
        actor_id: str,
    ) -> List[Union[Folder, CourseFile]]:
        course = self._course(course_id)
        self._require_reader(course, actor_id)
        self._folder_in_course(course_id, folder_id)
        items = self.repo.list_contents(course_id, folder_id)
        return [item for item in items if item.course_id == course_id]

    # --- Remote cleanup -------------------------------------------------------

    def _compensate_store(self, reference: StorageReference) -> None:
        try:
            self.media.remove(reference)
        except Exception:
            logger.exception("Compensating remove failed key=%s", reference.key)
            self._record_orphan(reference.key, reason="upload_compensation")
        else:
            logger.info("Compensated stored object key=%s", reference.key)

    def _discard_remote(self, reference: StorageReference, *, reason: str) -> None:
        try:
            self.media.remove(reference)
        except Exception:
            logger.exception("Remote remove failed key=%s", reference.key)
            self._record_orphan(reference.key, reason=reason)

    def _record_orphan(self, storage_key: str, *, reason: str) -> None:
        try:
            self.repo.record_orphan(storage_key, reason=reason)
        except Exception:
            logger.exception("Could not record orphan key=%s", storage_key)
        else:
            logger.warning("Orphan recorded key=%s reason=%s", storage_key, reason)

    def reconcile_orphans(self, limit: int = 100) -> Dict[str, int]:
        """Retry removal for recorded orphans; forget the ones that succeed."""
        removed = failed = 0
        for key in self.repo.list_orphans(limit):
            reference = StorageReference(key=key, url="", size_bytes=0, content_type="")
            try:
                self.media.remove(reference)
            except UploadError as exc:
                failed += 1
                logger.warning("Orphan still present key=%s transient=%s", key, exc.transient)
                continue
            self.repo.forget_orphan(key)
            removed += 1
        return {"removed": removed, "failed": failed}


__all__ = ["FileManagementService", "FilesRepoProtocol", "FOLDER_NAME_MAX", "FILE_NAME_MAX"]
