"""
File lifecycle management.

FileLifecycleManager is the only component that creates, serves, edits
and deletes stored files. It ties together the datasource (bytes), the
file repository (records), the access policy and the thumbnail job
dispatcher.

Ordering rules:
- Upload metadata is validated completely before any byte is written.
- Bytes are written before the record exists; a record therefore never
  points at missing or partial content.
- A view is counted by a single conditional update in the repository, so
  concurrent downloads can never exceed max_views.
"""

from __future__ import annotations

import hashlib
import mimetypes
import re
import secrets
import string
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from sharehub.core.datasource import Datasource, iter_chunks, retry_once
from sharehub.core.errors import (
    AccessDeniedError, DenyReason, ExpiredError, NotFoundError,
    StorageError, ValidationError,
)
from sharehub.logging.setup import get_logger
from .models import (
    AccessContext, ExpiredReason, FileRecord, UploadMetadata, Visibility,
    as_utc, thumbnail_storage_key, utcnow,
)
from .passwords import hash_password
from .policy import AccessPolicyEvaluator
from .repository import FileRepository, FolderRepository

if TYPE_CHECKING:
    from sharehub.core.jobs.dispatcher import JobDispatcher

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
KEY_ALPHABET = string.ascii_letters + string.digits
MAX_KEY_ATTEMPTS = 10
# Upper bound of the max_views column
MAX_VIEWS_LIMIT = 2**31 - 1

_EXTENSION_PATTERN = re.compile(r"^\.[a-z0-9]{1,16}$")

# Marker for "leave this field alone" in update()
UNSET: Any = object()


class _UploadMeter:
    """Counts and hashes bytes as they stream into the datasource."""

    def __init__(self, limit: int | None):
        self.limit = limit
        self.size = 0
        self._sha256 = hashlib.sha256()

    @property
    def checksum(self) -> str:
        return f"sha256:{self._sha256.hexdigest()}"

    async def wrap(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            self.size += len(chunk)
            if self.limit is not None and self.size > self.limit:
                raise ValidationError(
                    f"File exceeds the upload limit of {self.limit} bytes")
            self._sha256.update(chunk)
            yield chunk


def _parse_visibility(value: Visibility | str) -> Visibility:
    try:
        return Visibility(value)
    except ValueError:
        raise ValidationError(
            f"Invalid visibility {value!r}; expected 'public' or 'private'")


def _check_max_views(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("max_views must be a whole number >= 1", field="max_views")
    if value > MAX_VIEWS_LIMIT:
        raise ValidationError(
            f"max_views must be at most {MAX_VIEWS_LIMIT}", field="max_views")
    return value


def _check_expires_at(value: datetime | None, now: datetime) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise ValidationError("expires_at must be a datetime", field="expires_at")
    value = as_utc(value)
    if value <= now:
        raise ValidationError("expires_at must be in the future", field="expires_at")
    return value


def _check_password(value: str | None) -> str | None:
    if value is None:
        return None
    if not value:
        raise ValidationError("Password must not be empty")
    return hash_password(value)


class FileLifecycleManager:
    """
    Creates, serves, edits and deletes stored files.

    Args:
        datasource: Storage backend for file bytes
        files: File record repository
        folders: Folder repository (used to validate upload targets)
        dispatcher: Thumbnail job dispatcher, or None to disable thumbnails
        policy: Access policy evaluator
        max_upload_bytes: Upload size limit, None for unlimited
        key_length: Length of the random part of generated storage keys
        default_visibility: Visibility of uploads that do not choose one
        clock: Source of the current time
    """

    def __init__(
        self,
        datasource: Datasource,
        files: FileRepository,
        folders: FolderRepository,
        dispatcher: JobDispatcher | None = None,
        policy: AccessPolicyEvaluator | None = None,
        max_upload_bytes: int | None = None,
        key_length: int = 12,
        default_visibility: Visibility | str = Visibility.PUBLIC,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.datasource = datasource
        self.files = files
        self.folders = folders
        self.dispatcher = dispatcher
        self.policy = policy or AccessPolicyEvaluator()
        self.max_upload_bytes = max_upload_bytes
        self.key_length = key_length
        self.default_visibility = Visibility(default_visibility)
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_record(self, file_id: str) -> FileRecord:
        record = self.files.get(file_id)
        if record is None:
            raise NotFoundError(f"File '{file_id}' not found")
        return record

    def _get_owned(self, file_id: str, owner_id: str) -> FileRecord:
        record = self._get_record(file_id)
        if record.owner_id != owner_id:
            raise AccessDeniedError(DenyReason.FORBIDDEN)
        return record

    def _record_expiry(self, record: FileRecord, now: datetime) -> bool:
        """Persist the expired flag if a limit is exhausted but not yet recorded."""
        if record.expired:
            return False
        if record.is_time_expired(now):
            reason = ExpiredReason.TIME
        elif record.is_view_exhausted():
            reason = ExpiredReason.VIEWS
        else:
            return False
        return self.files.mark_expired(record.file_id, reason)

    async def _new_storage_key(self, name: str) -> str:
        suffix = PurePosixPath(name).suffix.lower()
        if not _EXTENSION_PATTERN.match(suffix):
            suffix = ""

        for _ in range(MAX_KEY_ATTEMPTS):
            stem = "".join(
                secrets.choice(KEY_ALPHABET) for _ in range(self.key_length))
            key = f"{stem}{suffix}"
            if self.files.storage_key_exists(key):
                continue
            if await retry_once(self.datasource.exists, key):
                continue
            return key

        raise StorageError(
            f"Could not generate a free storage key after {MAX_KEY_ATTEMPTS} attempts")

    def _enqueue_thumbnail(self, record: FileRecord) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.enqueue(
                record.file_id, record.storage_key, record.mime_type)
        except Exception as e:
            logger.warning(
                f"Failed to enqueue thumbnail job for file {record.file_id}: {e}")

    async def _remove_bytes_quietly(self, key: str) -> None:
        try:
            await self.datasource.delete(key)
        except StorageError as e:
            logger.error(f"Failed to remove orphaned object {key}: {e}")

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def ingest(self, source: Any, metadata: UploadMetadata) -> FileRecord:
        """
        Store a new file.

        Args:
            source: Byte source accepted by Datasource.put
            metadata: Display name, owner and access settings

        Returns:
            The persisted record

        Raises:
            ValidationError: If the metadata is invalid or the upload is too large
            StorageError: If the bytes or the record could not be written
        """
        now = self._clock()

        name = (metadata.name or "").strip()
        if not name:
            raise ValidationError("File name is required")
        if not metadata.owner_id:
            raise ValidationError("Owner is required")

        visibility = _parse_visibility(
            metadata.visibility or self.default_visibility)
        max_views = _check_max_views(metadata.max_views)
        expires_at = _check_expires_at(metadata.expires_at, now)

        if metadata.folder_id is not None:
            folder = self.folders.get(metadata.folder_id)
            if folder is None or folder.owner_id != metadata.owner_id:
                raise ValidationError(
                    f"Folder '{metadata.folder_id}' does not exist")

        password_hash = _check_password(metadata.password)
        mime_type = (
            metadata.mime_type
            or mimetypes.guess_type(name)[0]
            or DEFAULT_MIME_TYPE
        )

        storage_key = await self._new_storage_key(name)
        meter = _UploadMeter(self.max_upload_bytes)
        await self.datasource.put(
            storage_key,
            meter.wrap(iter_chunks(source, self.datasource.chunk_size)),
        )

        record = FileRecord(
            file_id=FileRecord.new_id(),
            name=name,
            storage_key=storage_key,
            owner_id=metadata.owner_id,
            mime_type=mime_type,
            size_bytes=meter.size,
            visibility=visibility,
            password_hash=password_hash,
            max_views=max_views,
            expires_at=expires_at,
            folder_id=metadata.folder_id,
            checksum=meter.checksum,
            created_at=now,
        )
        try:
            self.files.create(record)
        except Exception as e:
            logger.error(f"Failed to persist record for {storage_key}: {e}")
            await self._remove_bytes_quietly(storage_key)
            raise StorageError(f"Failed to persist file record: {e}") from e

        logger.info(
            f"Stored file {record.file_id} ({record.size_bytes} bytes) "
            f"for owner {record.owner_id}")
        self._enqueue_thumbnail(record)
        return record

    async def replace_content(
        self,
        file_id: str,
        owner_id: str,
        source: Any,
        mime_type: str | None = None,
    ) -> FileRecord:
        """
        Overwrite a file's bytes in place, keeping its id and storage key.

        Readers see either the old or the new content, never a mix. A
        superseding thumbnail job is queued for the new content.
        """
        record = self._get_owned(file_id, owner_id)

        meter = _UploadMeter(self.max_upload_bytes)
        await self.datasource.put(
            record.storage_key,
            meter.wrap(iter_chunks(source, self.datasource.chunk_size)),
        )

        updates: dict[str, Any] = {
            "size_bytes": meter.size,
            "checksum": meter.checksum,
        }
        if mime_type:
            updates["mime_type"] = mime_type
        if not self.files.update(file_id, updates):
            # Deleted while we were writing
            await self._remove_bytes_quietly(record.storage_key)
            raise NotFoundError(f"File '{file_id}' not found")

        record = self._get_record(file_id)
        logger.info(f"Replaced content of file {file_id} ({meter.size} bytes)")
        self._enqueue_thumbnail(record)
        return record

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, file_id: str) -> FileRecord:
        return self._get_record(file_id)

    def list_for_owner(self, owner_id: str) -> list[FileRecord]:
        return self.files.list_for_owner(owner_id)

    def _check_view(self, file_id: str, context: AccessContext,
                    now: datetime) -> FileRecord:
        record = self._get_record(file_id)

        decision = self.policy.decide(record, context, now)
        if not decision.allowed:
            if decision.reason == DenyReason.EXPIRED:
                self._record_expiry(record, now)
            raise decision.to_error()
        return record

    def _count_view(self, file_id: str, now: datetime) -> FileRecord:
        updated = self.files.increment_views(file_id, now)
        if updated is None:
            current = self._get_record(file_id)
            self._record_expiry(current, now)
            raise ExpiredError()

        if updated.expired:
            logger.info(f"File {file_id} reached its view limit ({updated.views})")
        return updated

    def record_view(self, file_id: str, context: AccessContext) -> FileRecord:
        """
        Check access and count one view.

        The N-th successful view of a file with max_views = N marks it
        expired in the same update; every later attempt is denied.

        Raises:
            NotFoundError: If the file does not exist
            AccessDeniedError: forbidden or bad_password
            ExpiredError: If the file expired, including losing the race
                for the last view
        """
        now = self._clock()
        self._check_view(file_id, context, now)
        return self._count_view(file_id, now)

    async def open(
            self, file_id: str,
            context: AccessContext) -> tuple[FileRecord, AsyncIterator[bytes]]:
        """
        Open the file's bytes and count a view.

        The view is counted only once the bytes are open, so a storage
        failure does not use up a view.

        Returns:
            (record, chunk iterator)
        """
        now = self._clock()
        record = self._check_view(file_id, context, now)
        try:
            stream = await retry_once(self.datasource.get, record.storage_key)
        except NotFoundError:
            logger.error(
                f"Bytes missing for file {file_id} (key {record.storage_key})")
            raise

        try:
            updated = self._count_view(file_id, now)
        except Exception:
            await stream.aclose()
            raise
        return updated, stream

    async def open_thumbnail(
            self, file_id: str,
            context: AccessContext) -> tuple[FileRecord, AsyncIterator[bytes]]:
        """Open a file's thumbnail under the file's access policy, without counting a view."""
        now = self._clock()
        record = self._get_record(file_id)

        decision = self.policy.decide(record, context, now)
        if not decision.allowed:
            raise decision.to_error()

        if record.thumbnail_key is None:
            raise NotFoundError(f"File '{file_id}' has no thumbnail")
        stream = await retry_once(self.datasource.get, record.thumbnail_key)
        return record, stream

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------

    def update(
        self,
        file_id: str,
        owner_id: str,
        *,
        name: str = UNSET,
        visibility: Visibility | str = UNSET,
        password: str | None = UNSET,
        max_views: int | None = UNSET,
        expires_at: datetime | None = UNSET,
    ) -> FileRecord:
        """
        Edit a file's metadata. Only the owner may edit.

        Fields left UNSET are unchanged; None clears password, max_views
        and expires_at. If a limit is already exhausted when the edit
        arrives, the expiry is recorded first, so raising the limit does
        not reopen the file.

        Raises:
            NotFoundError: If the file does not exist
            AccessDeniedError: If owner_id is not the owner
            ValidationError: If a new value is invalid
        """
        record = self._get_owned(file_id, owner_id)
        now = self._clock()

        updates: dict[str, Any] = {}
        if name is not UNSET:
            name = (name or "").strip()
            if not name:
                raise ValidationError("File name is required")
            updates["name"] = name
        if visibility is not UNSET:
            updates["visibility"] = _parse_visibility(visibility)
        if max_views is not UNSET:
            updates["max_views"] = _check_max_views(max_views)
        if expires_at is not UNSET:
            updates["expires_at"] = _check_expires_at(expires_at, now)
        if password is not UNSET:
            updates["password_hash"] = _check_password(password)

        self._record_expiry(record, now)

        if updates and not self.files.update(file_id, updates):
            raise NotFoundError(f"File '{file_id}' not found")
        if updates:
            logger.info(f"Updated file {file_id}: {sorted(updates)}")
        return self._get_record(file_id)

    def expire_sweep(self, now: datetime | None = None) -> int:
        """
        Mark every file whose expires_at has passed as expired.

        Bytes are kept. Running the sweep twice changes nothing the
        second time.

        Returns:
            Number of files newly expired
        """
        count = self.files.expire_due(now or self._clock())
        if count:
            logger.info(f"Expiration sweep marked {count} file(s) expired")
        return count

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, file_id: str) -> None:
        """
        Delete a file's bytes, pending job, record and thumbnail.

        The record goes before the thumbnail, so a worker that writes an
        artifact after this point finds no record and removes it itself.

        Raises:
            NotFoundError: If no record exists
            StorageError: If the bytes could not be removed; the record is
                kept so the delete can be retried
        """
        record = self._get_record(file_id)

        await retry_once(self.datasource.delete, record.storage_key)

        if self.dispatcher is not None:
            try:
                self.dispatcher.discard(file_id)
            except Exception as e:
                logger.warning(
                    f"Failed to discard thumbnail job for file {file_id}: {e}")

        if self.files.delete(file_id):
            logger.info(f"Deleted file {file_id}")
        else:
            logger.debug(f"File {file_id} record already removed")

        thumbnail_keys = {thumbnail_storage_key(file_id)}
        if record.thumbnail_key:
            thumbnail_keys.add(record.thumbnail_key)
        for key in thumbnail_keys:
            try:
                await self.datasource.delete(key)
            except StorageError as e:
                logger.warning(f"Failed to delete thumbnail {key}: {e}")
