"""
SQL implementation of file and folder persistence.

The view increment and the expiry transitions are single conditional
UPDATE statements, so they stay correct with several API workers and
concurrent sweeps hitting the same rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, delete, insert, or_, select, update
from sqlalchemy.exc import IntegrityError

from sharehub.core.database import Database, to_db_time
from sharehub.logging.setup import get_logger
from .models import ExpiredReason, FileRecord, Folder, Visibility
from .repository import FileRepository, FolderRepository

logger = get_logger(__name__)

_FILE_UPDATABLE = {
    "name", "mime_type", "size_bytes", "visibility", "password_hash",
    "max_views", "expires_at", "folder_id", "checksum", "thumbnail_key",
}
_FOLDER_UPDATABLE = {"name", "visibility"}


def _prepare(updates: dict[str, Any]) -> dict[str, Any]:
    values = {}
    for key, value in updates.items():
        if isinstance(value, Visibility):
            value = value.value
        elif isinstance(value, datetime):
            value = to_db_time(value)
        values[key] = value
    return values


class SQLFileRepository(FileRepository):
    """File records in the ``files`` table."""

    def __init__(self, database: Database):
        self.db = database
        self.engine = database.engine
        self.table = database.files

    def _row_to_record(self, row) -> FileRecord:
        return FileRecord.from_dict(dict(row._mapping))

    def _fetch(self, conn, file_id: str) -> FileRecord | None:
        row = conn.execute(
            select(self.table).where(self.table.c.file_id == file_id)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def create(self, record: FileRecord) -> FileRecord:
        values = record.to_dict()
        values["expires_at"] = to_db_time(record.expires_at)
        values["created_at"] = to_db_time(record.created_at)
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(self.table).values(**values))
        except IntegrityError as e:
            logger.error(f"Failed to store file record {record.file_id}: {e}")
            raise ValueError(f"File record storage failed: {e}") from e
        logger.info(f"Stored file record: {record.file_id}")
        return record

    def get(self, file_id: str) -> FileRecord | None:
        with self.engine.connect() as conn:
            return self._fetch(conn, file_id)

    def list_for_owner(self, owner_id: str) -> list[FileRecord]:
        query = (
            select(self.table)
            .where(self.table.c.owner_id == owner_id)
            .order_by(self.table.c.created_at.desc())
        )
        with self.engine.connect() as conn:
            return [self._row_to_record(row) for row in conn.execute(query)]

    def list_in_folder(self, folder_id: str) -> list[FileRecord]:
        query = (
            select(self.table)
            .where(self.table.c.folder_id == folder_id)
            .order_by(self.table.c.created_at)
        )
        with self.engine.connect() as conn:
            return [self._row_to_record(row) for row in conn.execute(query)]

    def storage_key_exists(self, storage_key: str) -> bool:
        query = select(self.table.c.file_id).where(
            self.table.c.storage_key == storage_key)
        with self.engine.connect() as conn:
            return conn.execute(query).first() is not None

    def update(self, file_id: str, updates: dict[str, Any]) -> bool:
        unknown = set(updates) - _FILE_UPDATABLE
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if not updates:
            return self.get(file_id) is not None

        query = (
            update(self.table)
            .where(self.table.c.file_id == file_id)
            .values(**_prepare(updates))
        )
        with self.engine.begin() as conn:
            updated = conn.execute(query).rowcount > 0

        if updated:
            logger.debug(f"Updated file record {file_id}: {sorted(updates)}")
        return updated

    def delete(self, file_id: str) -> bool:
        query = delete(self.table).where(self.table.c.file_id == file_id)
        with self.engine.begin() as conn:
            deleted = conn.execute(query).rowcount > 0
        if deleted:
            logger.info(f"Deleted file record: {file_id}")
        return deleted

    def increment_views(self, file_id: str, now: datetime) -> FileRecord | None:
        t = self.table
        reaches_limit = and_(
            t.c.max_views.isnot(None), t.c.views + 1 >= t.c.max_views)

        # expired/expired_reason are listed first: some dialects evaluate
        # SET clauses left to right against the already-updated row
        query = (
            update(t)
            .where(
                t.c.file_id == file_id,
                t.c.expired.is_(False),
                or_(t.c.max_views.is_(None), t.c.views < t.c.max_views),
                or_(t.c.expires_at.is_(None), t.c.expires_at > to_db_time(now)),
            )
            .ordered_values(
                (t.c.expired, case((reaches_limit, True), else_=t.c.expired)),
                (t.c.expired_reason, case(
                    (reaches_limit, ExpiredReason.VIEWS.value),
                    else_=t.c.expired_reason)),
                (t.c.views, t.c.views + 1),
            )
        )
        with self.engine.begin() as conn:
            if conn.execute(query).rowcount != 1:
                return None
            return self._fetch(conn, file_id)

    def mark_expired(self, file_id: str, reason: ExpiredReason) -> bool:
        query = (
            update(self.table)
            .where(
                self.table.c.file_id == file_id,
                self.table.c.expired.is_(False),
            )
            .values(expired=True, expired_reason=ExpiredReason(reason).value)
        )
        with self.engine.begin() as conn:
            transitioned = conn.execute(query).rowcount > 0
        if transitioned:
            logger.info(f"File {file_id} expired ({ExpiredReason(reason).value})")
        return transitioned

    def expire_due(self, now: datetime) -> int:
        query = (
            update(self.table)
            .where(
                self.table.c.expired.is_(False),
                self.table.c.expires_at.isnot(None),
                self.table.c.expires_at <= to_db_time(now),
            )
            .values(expired=True, expired_reason=ExpiredReason.TIME.value)
        )
        with self.engine.begin() as conn:
            return conn.execute(query).rowcount

    def assign_folder(
            self, file_ids: list[str], folder_id: str, owner_id: str) -> list[str]:
        ids = list(dict.fromkeys(file_ids))
        if not ids:
            return []
        t = self.table
        with self.engine.begin() as conn:
            conn.execute(
                update(t)
                .where(t.c.file_id.in_(ids), t.c.owner_id == owner_id)
                .values(folder_id=folder_id)
            )
            rows = conn.execute(
                select(t.c.file_id).where(
                    t.c.file_id.in_(ids), t.c.folder_id == folder_id)
            )
            return [row.file_id for row in rows]

    def clear_folder(self, folder_id: str) -> int:
        query = (
            update(self.table)
            .where(self.table.c.folder_id == folder_id)
            .values(folder_id=None)
        )
        with self.engine.begin() as conn:
            return conn.execute(query).rowcount


class SQLFolderRepository(FolderRepository):
    """Folder records in the ``folders`` table; members come from ``files``."""

    def __init__(self, database: Database):
        self.db = database
        self.engine = database.engine
        self.table = database.folders
        self.files = database.files

    def _load(self, conn, row) -> Folder:
        members = conn.execute(
            select(self.files.c.file_id).where(
                self.files.c.folder_id == row.folder_id)
        )
        return Folder(
            folder_id=row.folder_id,
            name=row.name,
            owner_id=row.owner_id,
            visibility=row.visibility,
            created_at=row.created_at,
            file_ids={m.file_id for m in members},
        )

    def create(self, folder: Folder) -> Folder:
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(self.table).values(
                    folder_id=folder.folder_id,
                    name=folder.name,
                    owner_id=folder.owner_id,
                    visibility=folder.visibility.value,
                    created_at=to_db_time(folder.created_at),
                ))
        except IntegrityError as e:
            raise ValueError(f"Folder storage failed: {e}") from e
        logger.info(f"Stored folder: {folder.folder_id}")
        return folder

    def get(self, folder_id: str) -> Folder | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.table).where(self.table.c.folder_id == folder_id)
            ).fetchone()
            return self._load(conn, row) if row else None

    def list_for_owner(self, owner_id: str) -> list[Folder]:
        query = (
            select(self.table)
            .where(self.table.c.owner_id == owner_id)
            .order_by(self.table.c.created_at)
        )
        with self.engine.connect() as conn:
            return [self._load(conn, row) for row in conn.execute(query).fetchall()]

    def update(self, folder_id: str, updates: dict[str, Any]) -> bool:
        unknown = set(updates) - _FOLDER_UPDATABLE
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if not updates:
            return self.get(folder_id) is not None
        query = (
            update(self.table)
            .where(self.table.c.folder_id == folder_id)
            .values(**_prepare(updates))
        )
        with self.engine.begin() as conn:
            return conn.execute(query).rowcount > 0

    def delete(self, folder_id: str) -> bool:
        query = delete(self.table).where(self.table.c.folder_id == folder_id)
        with self.engine.begin() as conn:
            deleted = conn.execute(query).rowcount > 0
        if deleted:
            logger.info(f"Deleted folder: {folder_id}")
        return deleted
