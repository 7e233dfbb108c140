"""
Persistence interface for file and folder records.

The core only needs plain CRUD plus a few conditional updates that must
be atomic in the backing store: the view increment and the expiry
transition.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from .models import ExpiredReason, FileRecord, Folder


class FileRepository(ABC):
    """Abstract interface for file record persistence."""

    @abstractmethod
    def create(self, record: FileRecord) -> FileRecord:
        """
        Persist a new file record.

        Raises:
            ValueError: If the id or storage key is already taken
        """
        pass

    @abstractmethod
    def get(self, file_id: str) -> FileRecord | None:
        """Retrieve a file record, or None if it does not exist."""
        pass

    @abstractmethod
    def list_for_owner(self, owner_id: str) -> list[FileRecord]:
        """All files owned by a user, newest first."""
        pass

    @abstractmethod
    def list_in_folder(self, folder_id: str) -> list[FileRecord]:
        """All files whose folder reference is folder_id."""
        pass

    @abstractmethod
    def storage_key_exists(self, storage_key: str) -> bool:
        """Check whether any record uses storage_key."""
        pass

    @abstractmethod
    def update(self, file_id: str, updates: dict[str, Any]) -> bool:
        """
        Update mutable fields of a record.

        storage_key, views and expired are not accepted here; they change
        only through the dedicated operations below.

        Returns:
            True if updated, False if not found
        """
        pass

    @abstractmethod
    def delete(self, file_id: str) -> bool:
        """
        Delete a record.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    def increment_views(self, file_id: str, now: datetime) -> FileRecord | None:
        """
        Atomically count one view if the file is still open.

        The increment applies only when the file is not expired, has views
        left and its expiry time has not passed. When the new count
        reaches max_views the record is marked expired in the same update.

        Returns:
            The updated record, or None if the conditional update matched
            nothing (file gone, expired, or a concurrent view took the last
            slot)
        """
        pass

    @abstractmethod
    def mark_expired(self, file_id: str, reason: ExpiredReason) -> bool:
        """
        Transition a file from not-expired to expired.

        Returns:
            True if this call performed the transition
        """
        pass

    @abstractmethod
    def expire_due(self, now: datetime) -> int:
        """
        Mark every not-yet-expired file with expires_at <= now as expired.

        Returns:
            Number of files transitioned by this call
        """
        pass

    @abstractmethod
    def assign_folder(
            self, file_ids: list[str], folder_id: str, owner_id: str) -> list[str]:
        """
        Point files owned by owner_id at folder_id.

        Ids that do not exist or belong to someone else are skipped.

        Returns:
            Ids of files now in the folder
        """
        pass

    @abstractmethod
    def clear_folder(self, folder_id: str) -> int:
        """
        Set the folder reference of every member of folder_id to None.

        Returns:
            Number of files detached
        """
        pass


class FolderRepository(ABC):
    """Abstract interface for folder record persistence."""

    @abstractmethod
    def create(self, folder: Folder) -> Folder:
        """Persist a new folder."""
        pass

    @abstractmethod
    def get(self, folder_id: str) -> Folder | None:
        """Retrieve a folder with its member ids, or None."""
        pass

    @abstractmethod
    def list_for_owner(self, owner_id: str) -> list[Folder]:
        """All folders owned by a user."""
        pass

    @abstractmethod
    def update(self, folder_id: str, updates: dict[str, Any]) -> bool:
        """Update name/visibility. Returns False if not found."""
        pass

    @abstractmethod
    def delete(self, folder_id: str) -> bool:
        """Delete the folder record. Returns False if not found."""
        pass
