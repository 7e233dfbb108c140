"""Abstract datasource: a uniform byte-stream interface over one storage backend."""

from __future__ import annotations

import inspect
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any, BinaryIO, TypeVar, Union

from sharehub.core.errors import StorageError
from sharehub.logging.setup import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_CHUNK_SIZE = 64 * 1024

# Anything put() accepts as a source of bytes
ByteSource = Union[bytes, bytearray, BinaryIO, AsyncIterable[bytes], Any]

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._\-/]*$")


def validate_key(key: str) -> str:
    """
    Check that a storage key is a safe backend-relative locator.

    Keys are relative, made of letters, digits, '.', '_', '-' and '/',
    and never contain empty or '..' segments.

    Raises:
        StorageError: If the key is unsafe
    """
    if not key or not _KEY_PATTERN.match(key):
        raise StorageError(f"Invalid storage key: {key!r}")
    if any(part in ("", ".", "..") for part in key.split("/")):
        raise StorageError(f"Invalid storage key: {key!r}")
    return key


async def iter_chunks(
        source: ByteSource,
        chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """
    Normalise a byte source into an async iterator of chunks.

    Supported sources:
    - bytes / bytearray
    - objects with an async read(size), such as starlette UploadFile
    - binary file objects with a blocking read(size)
    - async iterables of bytes
    """
    if isinstance(source, (bytes, bytearray)):
        view = memoryview(source)
        for offset in range(0, len(view), chunk_size):
            yield bytes(view[offset:offset + chunk_size])
        return

    if hasattr(source, "__aiter__"):
        async for chunk in source:
            if chunk:
                yield bytes(chunk)
        return

    read = getattr(source, "read", None)
    if read is None:
        raise TypeError(f"Unsupported byte source: {type(source).__name__}")

    while True:
        chunk = read(chunk_size)
        if inspect.isawaitable(chunk):
            chunk = await chunk
        if not chunk:
            break
        yield chunk


async def read_all(chunks: AsyncIterator[bytes], limit: int | None = None) -> bytes:
    """
    Collect a chunk iterator into bytes.

    Raises:
        StorageError: If more than ``limit`` bytes arrive
    """
    buffer = bytearray()
    async for chunk in chunks:
        buffer.extend(chunk)
        if limit is not None and len(buffer) > limit:
            raise StorageError(f"Object exceeds read limit of {limit} bytes")
    return bytes(buffer)


async def retry_once(
        operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
    """
    Run an idempotent datasource operation, retrying once on StorageError.

    Only get/delete/exists style calls may go through here; writes are
    never retried automatically.
    """
    try:
        return await operation(*args, **kwargs)
    except StorageError as e:
        logger.warning(
            f"Storage operation {getattr(operation, '__name__', operation)} "
            f"failed, retrying once: {e}")
        return await operation(*args, **kwargs)


class Datasource(ABC):
    """
    Abstract storage backend for file bytes.

    Implementations:
    - LocalDatasource: objects on the local filesystem
    - S3Datasource: objects in an S3-compatible store

    All operations stream; none of them buffers a whole object in memory.
    Callers never branch on the concrete backend.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size

    @property
    @abstractmethod
    def name(self) -> str:
        """Short backend name used in logs."""
        pass

    @abstractmethod
    async def put(self, key: str, source: ByteSource) -> int:
        """
        Store bytes under key, replacing any existing object atomically.

        A reader never observes a partially written object. If the write
        fails or the calling task is cancelled, partial bytes are removed.

        Args:
            key: Backend-relative storage key
            source: Byte source (see iter_chunks)

        Returns:
            Number of bytes written

        Raises:
            StorageError: If the backend write fails. Exceptions raised by
                the source itself propagate unchanged.
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> AsyncIterator[bytes]:
        """
        Open an object for streaming.

        Returns:
            Async iterator over the object's bytes in chunks

        Raises:
            NotFoundError: If no object exists under key
            StorageError: If the backend read fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Delete an object. Deleting a missing key is not an error.

        Raises:
            StorageError: If the backend delete fails
        """
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """
        Check whether an object exists.

        Raises:
            StorageError: If the backend cannot be queried
        """
        pass

    @abstractmethod
    async def check(self) -> None:
        """
        Verify that the backend is reachable and writable.

        Raises:
            StorageError: If the backend cannot be used
        """
        pass
