"""
File and folder models.

Password hashes are stored on FileRecord but never leave the core:
to_public_dict() reports only whether a password is set.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Visibility(str, Enum):
    """Whether a file or folder is reachable by anyone or by its owner only."""
    PUBLIC = "public"
    PRIVATE = "private"


class ExpiredReason(str, Enum):
    """What closed an expired file."""
    TIME = "time"
    VIEWS = "views"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise a datetime to aware UTC (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


THUMBNAIL_PREFIX = "thumbnails"


def thumbnail_storage_key(file_id: str) -> str:
    """Deterministic datasource key of a file's thumbnail artifact."""
    return f"{THUMBNAIL_PREFIX}/{file_id}.jpg"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class FileRecord:
    """
    Persistent record of one stored file.

    storage_key locates the primary bytes in the datasource and never
    changes once assigned. expired is a sticky flag: it only ever goes
    from False to True, whatever happens to max_views or expires_at.
    """

    file_id: str
    name: str
    storage_key: str
    owner_id: str
    mime_type: str = "application/octet-stream"
    size_bytes: int = 0
    visibility: Visibility = Visibility.PRIVATE
    password_hash: str | None = None
    max_views: int | None = None
    expires_at: datetime | None = None
    views: int = 0
    expired: bool = False
    expired_reason: ExpiredReason | None = None
    folder_id: str | None = None
    checksum: str | None = None
    thumbnail_key: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.visibility = Visibility(self.visibility)
        if self.expired_reason is not None:
            self.expired_reason = ExpiredReason(self.expired_reason)
        self.expires_at = as_utc(self.expires_at)
        self.created_at = as_utc(self.created_at)

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_time_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= as_utc(now)

    def is_view_exhausted(self) -> bool:
        return self.max_views is not None and self.views >= self.max_views

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (includes password_hash, for storage)."""
        return {
            'file_id': self.file_id,
            'name': self.name,
            'storage_key': self.storage_key,
            'owner_id': self.owner_id,
            'mime_type': self.mime_type,
            'size_bytes': self.size_bytes,
            'visibility': self.visibility.value,
            'password_hash': self.password_hash,
            'max_views': self.max_views,
            'expires_at': self.expires_at,
            'views': self.views,
            'expired': self.expired,
            'expired_reason': self.expired_reason.value if self.expired_reason else None,
            'folder_id': self.folder_id,
            'checksum': self.checksum,
            'thumbnail_key': self.thumbnail_key,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileRecord:
        """Create from a stored row mapping."""
        return cls(
            file_id=data['file_id'],
            name=data['name'],
            storage_key=data['storage_key'],
            owner_id=data['owner_id'],
            mime_type=data.get('mime_type') or "application/octet-stream",
            size_bytes=data.get('size_bytes') or 0,
            visibility=data.get('visibility') or Visibility.PRIVATE,
            password_hash=data.get('password_hash'),
            max_views=data.get('max_views'),
            expires_at=data.get('expires_at'),
            views=data.get('views') or 0,
            expired=bool(data.get('expired')),
            expired_reason=data.get('expired_reason'),
            folder_id=data.get('folder_id'),
            checksum=data.get('checksum'),
            thumbnail_key=data.get('thumbnail_key'),
            created_at=data.get('created_at') or utcnow(),
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Convert to the shape handed to API callers (no hash, no key)."""
        return {
            'id': self.file_id,
            'name': self.name,
            'mime_type': self.mime_type,
            'size': self.size_bytes,
            'owner_id': self.owner_id,
            'visibility': self.visibility.value,
            'password': self.has_password,
            'max_views': self.max_views,
            'views': self.views,
            'expires_at': _iso(self.expires_at),
            'expired': self.expired,
            'folder_id': self.folder_id,
            'thumbnail': self.thumbnail_key is not None,
            'created_at': _iso(self.created_at),
        }


@dataclass
class Folder:
    """
    A named group of files owned by one user.

    Visibility only controls who may list the folder; it never widens
    access to the files inside it.
    """

    folder_id: str
    name: str
    owner_id: str
    visibility: Visibility = Visibility.PRIVATE
    created_at: datetime = field(default_factory=utcnow)
    file_ids: set[str] = field(default_factory=set)

    def __post_init__(self):
        self.visibility = Visibility(self.visibility)
        self.created_at = as_utc(self.created_at)
        self.file_ids = set(self.file_ids)

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def to_public_dict(
            self, files: list[FileRecord] | None = None) -> dict[str, Any]:
        data = {
            'id': self.folder_id,
            'name': self.name,
            'owner_id': self.owner_id,
            'visibility': self.visibility.value,
            'created_at': _iso(self.created_at),
            'file_ids': sorted(self.file_ids),
        }
        if files is not None:
            data['files'] = [f.to_public_dict() for f in files]
        return data


@dataclass
class AccessContext:
    """
    Identity context supplied by the authenticated request layer.

    caller_id is None for anonymous callers; password is whatever the
    caller supplied for a protected file.
    """

    caller_id: str | None = None
    password: str | None = None


@dataclass
class UploadMetadata:
    """Caller-supplied metadata for a new upload."""

    name: str
    owner_id: str
    mime_type: str | None = None
    visibility: Visibility | str | None = None
    password: str | None = None
    max_views: int | None = None
    expires_at: datetime | None = None
    folder_id: str | None = None
