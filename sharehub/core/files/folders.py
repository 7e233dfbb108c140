"""
Folder membership.

A file belongs to at most one folder through its folder_id. Folders never
own bytes: deleting a folder only detaches its files.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from sharehub.core.errors import (
    AccessDeniedError, DenyReason, NotFoundError, ValidationError,
)
from sharehub.logging.setup import get_logger
from .lifecycle import UNSET
from .models import FileRecord, Folder, Visibility, utcnow
from .repository import FileRepository, FolderRepository

logger = get_logger(__name__)


def _folder_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Folder name is required")
    return name


def _folder_visibility(value: Visibility | str) -> Visibility:
    try:
        return Visibility(value)
    except ValueError:
        raise ValidationError(
            f"Invalid visibility {value!r}; expected 'public' or 'private'")


class FolderAggregator:
    """Creates folders and manages which files they contain."""

    def __init__(
        self,
        folders: FolderRepository,
        files: FileRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.folders = folders
        self.files = files
        self._clock = clock

    def _get(self, folder_id: str, owner_id: str | None = None) -> Folder:
        folder = self.folders.get(folder_id)
        if folder is None:
            raise NotFoundError(f"Folder '{folder_id}' not found")
        if owner_id is not None and folder.owner_id != owner_id:
            raise AccessDeniedError(DenyReason.FORBIDDEN)
        return folder

    def create(
        self,
        name: str,
        owner_id: str,
        initial_file_ids: Iterable[str] = (),
        visibility: Visibility | str = Visibility.PRIVATE,
    ) -> Folder:
        """
        Create a folder, optionally with initial members.

        Initial ids that do not exist or belong to another user are
        dropped silently; they never make creation fail.

        Raises:
            ValidationError: If the name is empty or visibility unknown
        """
        folder = Folder(
            folder_id=Folder.new_id(),
            name=_folder_name(name),
            owner_id=owner_id,
            visibility=_folder_visibility(visibility),
            created_at=self._clock(),
        )
        self.folders.create(folder)

        requested = list(initial_file_ids)
        if requested:
            folder.file_ids = set(
                self.files.assign_folder(requested, folder.folder_id, owner_id))
            skipped = len(set(requested)) - len(folder.file_ids)
            if skipped:
                logger.debug(
                    f"Folder {folder.folder_id}: skipped {skipped} file(s) "
                    "not owned by the creator")

        logger.info(f"Created folder {folder.folder_id} for owner {owner_id}")
        return folder

    def attach(
        self,
        folder_id: str,
        file_ids: Iterable[str],
        owner_id: str | None = None,
    ) -> Folder:
        """
        Move files into a folder.

        Only files owned by the folder's owner are attached; attaching a
        member again is a no-op.

        Args:
            owner_id: If given, the caller must own the folder

        Raises:
            NotFoundError: If the folder does not exist
            AccessDeniedError: If owner_id does not own the folder
        """
        folder = self._get(folder_id, owner_id)
        attached = self.files.assign_folder(
            list(file_ids), folder.folder_id, folder.owner_id)
        if attached:
            logger.debug(f"Attached {len(attached)} file(s) to folder {folder_id}")
        return self._get(folder_id)

    def detach_all(self, folder_id: str) -> int:
        count = self.files.clear_folder(folder_id)
        logger.debug(f"Detached {count} file(s) from folder {folder_id}")
        return count

    def delete(self, folder_id: str, owner_id: str | None = None) -> None:
        """
        Delete a folder. Member files are detached, never deleted.

        Raises:
            NotFoundError: If the folder does not exist
            AccessDeniedError: If owner_id does not own the folder
        """
        self._get(folder_id, owner_id)
        self.detach_all(folder_id)
        self.folders.delete(folder_id)
        logger.info(f"Deleted folder {folder_id}")

    def get(self, folder_id: str, owner_id: str | None = None) -> Folder:
        return self._get(folder_id, owner_id)

    def files_in(self, folder_id: str) -> list[FileRecord]:
        return self.files.list_in_folder(folder_id)

    def list_for_owner(self, owner_id: str) -> list[Folder]:
        return self.folders.list_for_owner(owner_id)

    def update(
        self,
        folder_id: str,
        owner_id: str,
        *,
        name: str = UNSET,
        visibility: Visibility | str = UNSET,
    ) -> Folder:
        self._get(folder_id, owner_id)

        updates: dict[str, Any] = {}
        if name is not UNSET:
            updates["name"] = _folder_name(name)
        if visibility is not UNSET:
            updates["visibility"] = _folder_visibility(visibility)

        if updates:
            self.folders.update(folder_id, updates)
            logger.info(f"Updated folder {folder_id}: {sorted(updates)}")
        return self._get(folder_id)

    def view(
            self, folder_id: str,
            caller_id: str | None = None) -> tuple[Folder, list[FileRecord]]:
        """
        Folder listing as seen by caller_id.

        Public folders are listed to anyone, private ones only to their
        owner; to everyone else a private folder does not exist. Other
        callers see only the public members, and seeing a member never
        grants access to its bytes.
        """
        folder = self._get(folder_id)
        is_owner = caller_id is not None and caller_id == folder.owner_id
        if folder.visibility == Visibility.PRIVATE and not is_owner:
            raise NotFoundError(f"Folder '{folder_id}' not found")

        members = self.files.list_in_folder(folder_id)
        if not is_owner:
            members = [f for f in members if f.visibility == Visibility.PUBLIC]
            folder.file_ids = {f.file_id for f in members}
        return folder, members
