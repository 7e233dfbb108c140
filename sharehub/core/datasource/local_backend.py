"""Local filesystem datasource."""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator
from pathlib import Path
from typing import BinaryIO

from sharehub.core.errors import NotFoundError, StorageError
from sharehub.logging.setup import get_logger
from .backend import (
    DEFAULT_CHUNK_SIZE,
    ByteSource,
    Datasource,
    iter_chunks,
    validate_key,
)

logger = get_logger(__name__)


class LocalDatasource(Datasource):
    """
    Local filesystem datasource.

    Objects live directly under the base directory at their key:
    - Base directory: /path/to/storage/
    - Example: /path/to/storage/aB3dE5fG7hJ9.png
    - Example: /path/to/storage/thumbnails/<file_id>.jpg

    Writes go to base_dir/.tmp first and are moved into place with
    os.replace, so readers only ever see complete objects. Storage keys
    cannot start with '.', which keeps the temp area out of the key space.
    """

    def __init__(self, base_dir: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        """
        Initialize local datasource.

        Args:
            base_dir: Root directory for stored objects
            chunk_size: Read/write chunk size in bytes
        """
        super().__init__(chunk_size)
        self.base_dir = Path(base_dir).resolve()
        self.tmp_dir = self.base_dir / ".tmp"

    @property
    def name(self) -> str:
        return "local"

    def _path(self, key: str) -> Path:
        """Map a storage key to a path inside base_dir."""
        validate_key(key)
        path = (self.base_dir / key).resolve()
        if self.base_dir not in path.parents:
            raise StorageError(f"Storage key escapes datasource root: {key!r}")
        return path

    async def put(self, key: str, source: ByteSource) -> int:
        path = self._path(key)
        tmp_path = self.tmp_dir / f"{uuid.uuid4().hex}.part"
        written = 0

        try:
            self.tmp_dir.mkdir(parents=True, exist_ok=True)
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(tmp_path, "wb") as f:
                async for chunk in iter_chunks(source, self.chunk_size):
                    f.write(chunk)
                    written += len(chunk)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, path)

        except OSError as e:
            logger.error(f"Failed to write {key}: {e}")
            raise StorageError(f"Failed to write {key}: {e}") from e

        finally:
            # Covers failed writes, source errors and cancelled uploads
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)

        logger.debug(f"Stored {key} ({written} bytes)")
        return written

    async def get(self, key: str) -> AsyncIterator[bytes]:
        path = self._path(key)
        try:
            handle = open(path, "rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFoundError(f"Object not found: {key}")
        except OSError as e:
            raise StorageError(f"Failed to open {key}: {e}") from e

        return self._stream(handle, key)

    async def _stream(self, handle: BinaryIO, key: str) -> AsyncIterator[bytes]:
        with handle:
            while True:
                try:
                    chunk = handle.read(self.chunk_size)
                except OSError as e:
                    raise StorageError(f"Failed to read {key}: {e}") from e
                if not chunk:
                    break
                yield chunk

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e
        logger.debug(f"Deleted {key}")

    async def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    async def check(self) -> None:
        probe = self.tmp_dir / f"probe-{uuid.uuid4().hex}"
        try:
            self.tmp_dir.mkdir(parents=True, exist_ok=True)
            probe.write_bytes(b"")
            probe.unlink()
        except OSError as e:
            raise StorageError(
                f"Local datasource at {self.base_dir} is not writable: {e}") from e
        logger.info(f"Local datasource ready at {self.base_dir}")
