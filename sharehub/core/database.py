"""
SQL schema shared by the API process and the offload worker.

Both processes open the same database: file and folder records live next
to the thumbnail job queue, which is the only channel between them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Index,
    String, Integer, BigInteger, Boolean, DateTime,
)
from sqlalchemy.engine import make_url

from sharehub.logging.setup import get_logger

logger = get_logger(__name__)


def to_db_time(value: datetime | None) -> datetime | None:
    """Timestamps are stored as naive UTC so comparisons work on every dialect."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


class Database:
    """Engine plus table definitions."""

    def __init__(self, connection_string: str):
        """
        Initialize database and create missing tables.

        Args:
            connection_string: SQLAlchemy connection string
        """
        url = make_url(connection_string)
        connect_args = {}
        if url.get_backend_name() == "sqlite":
            # Request handlers and the sweep task share the engine
            connect_args = {"check_same_thread": False, "timeout": 30}
            if url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(connection_string, connect_args=connect_args)
        self.metadata = MetaData()

        self.files = Table(
            "files", self.metadata,
            Column("file_id", String(64), primary_key=True),
            Column("name", String(1024), nullable=False),
            Column("storage_key", String(512), nullable=False, unique=True),
            Column("owner_id", String(255), nullable=False),
            Column("mime_type", String(255), nullable=False),
            Column("size_bytes", BigInteger, nullable=False, default=0),
            Column("visibility", String(16), nullable=False),
            Column("password_hash", String(255)),
            Column("max_views", Integer),
            Column("expires_at", DateTime),
            Column("views", Integer, nullable=False, default=0),
            Column("expired", Boolean, nullable=False, default=False),
            Column("expired_reason", String(16)),
            Column("folder_id", String(64)),
            Column("checksum", String(128)),
            Column("thumbnail_key", String(512)),
            Column("created_at", DateTime, nullable=False),
            Index("idx_files_owner", "owner_id"),
            Index("idx_files_folder", "folder_id"),
            Index("idx_files_expiry", "expired", "expires_at"),
        )

        self.folders = Table(
            "folders", self.metadata,
            Column("folder_id", String(64), primary_key=True),
            Column("name", String(1024), nullable=False),
            Column("owner_id", String(255), nullable=False),
            Column("visibility", String(16), nullable=False),
            Column("created_at", DateTime, nullable=False),
            Index("idx_folders_owner", "owner_id"),
        )

        self.thumbnail_jobs = Table(
            "thumbnail_jobs", self.metadata,
            Column("file_id", String(64), primary_key=True),
            Column("job_id", String(64), nullable=False, unique=True),
            Column("source_key", String(512), nullable=False),
            Column("mime_hint", String(255)),
            Column("attempts", Integer, nullable=False, default=0),
            Column("state", String(16), nullable=False),
            Column("eligible_at", DateTime, nullable=False),
            Column("claimed_at", DateTime),
            Column("last_error", String(1024)),
            Index("idx_jobs_state_eligible", "state", "eligible_at"),
        )

        self.metadata.create_all(self.engine)
        logger.info(f"Database initialized ({url.get_backend_name()})")

    def dispose(self) -> None:
        self.engine.dispose()
