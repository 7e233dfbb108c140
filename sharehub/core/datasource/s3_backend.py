"""S3-compatible object store datasource."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

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

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}

MIN_PART_SIZE = 5 * 1024 * 1024


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES


class S3Datasource(Datasource):
    """
    Datasource over an S3-compatible object store (AWS S3, MinIO, ...).

    Small objects are written with a single PutObject. Larger ones are
    streamed as a multipart upload, buffering at most one part in memory;
    the object only becomes visible when the upload completes, and a
    failed or cancelled upload is aborted.

    boto3 is blocking, so every call runs in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        client: Any | None = None,
        endpoint_url: str | None = None,
        region: str = "us-east-1",
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        force_path_style: bool = False,
        part_size: int = 8 * 1024 * 1024,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        Initialize S3 datasource.

        Args:
            bucket: Bucket holding all objects
            client: Preconfigured boto3 S3 client (built from the other
                arguments when omitted)
            part_size: Multipart part size in bytes (at least 5 MiB)
        """
        super().__init__(chunk_size)
        self.bucket = bucket
        self.region = region
        self.part_size = max(part_size, MIN_PART_SIZE)

        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=BotoConfig(
                    s3={"addressing_style": "path" if force_path_style else "auto"}),
            )
        self.client = client

    @property
    def name(self) -> str:
        return "s3"

    async def _call(self, method: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(getattr(self.client, method), **kwargs)

    def _abort(self, key: str, upload_id: str | None) -> None:
        if upload_id is None:
            return
        try:
            self.client.abort_multipart_upload(
                Bucket=self.bucket, Key=key, UploadId=upload_id)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to abort multipart upload for {key}: {e}")

    async def put(self, key: str, source: ByteSource) -> int:
        validate_key(key)
        buffer = bytearray()
        parts: list[dict[str, Any]] = []
        upload_id: str | None = None
        total = 0

        async def flush_part() -> None:
            nonlocal upload_id
            if upload_id is None:
                response = await self._call(
                    "create_multipart_upload", Bucket=self.bucket, Key=key)
                upload_id = response["UploadId"]
            part_number = len(parts) + 1
            response = await self._call(
                "upload_part",
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=bytes(buffer),
            )
            parts.append({"ETag": response["ETag"], "PartNumber": part_number})
            buffer.clear()

        try:
            async for chunk in iter_chunks(source, self.chunk_size):
                buffer.extend(chunk)
                total += len(chunk)
                if len(buffer) >= self.part_size:
                    await flush_part()

            if upload_id is None:
                await self._call(
                    "put_object", Bucket=self.bucket, Key=key, Body=bytes(buffer))
            else:
                if buffer:
                    await flush_part()
                await self._call(
                    "complete_multipart_upload",
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=upload_id,
                    MultipartUpload={"Parts": parts},
                )

        except (BotoCoreError, ClientError) as e:
            self._abort(key, upload_id)
            logger.error(f"Failed to upload {key} to bucket {self.bucket}: {e}")
            raise StorageError(f"Failed to write {key}: {e}") from e

        except BaseException:
            # Source errors and cancellation leave no partial upload behind
            self._abort(key, upload_id)
            raise

        logger.debug(f"Stored s3://{self.bucket}/{key} ({total} bytes)")
        return total

    async def get(self, key: str) -> AsyncIterator[bytes]:
        validate_key(key)
        try:
            response = await self._call("get_object", Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                raise NotFoundError(f"Object not found: {key}")
            raise StorageError(f"Failed to open {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to open {key}: {e}") from e

        return self._stream(response["Body"], key)

    async def _stream(self, body: Any, key: str) -> AsyncIterator[bytes]:
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(body.read, self.chunk_size)
                except (BotoCoreError, ClientError) as e:
                    raise StorageError(f"Failed to read {key}: {e}") from e
                if not chunk:
                    break
                yield chunk
        finally:
            body.close()

    async def delete(self, key: str) -> None:
        validate_key(key)
        try:
            await self._call("delete_object", Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return
            raise StorageError(f"Failed to delete {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e
        logger.debug(f"Deleted s3://{self.bucket}/{key}")

    async def exists(self, key: str) -> bool:
        validate_key(key)
        try:
            await self._call("head_object", Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise StorageError(f"Failed to stat {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to stat {key}: {e}") from e

    async def check(self) -> None:
        try:
            await self._call("head_bucket", Bucket=self.bucket)
            logger.info(f"Bucket '{self.bucket}' already exists")
            return
        except ClientError as e:
            if not _is_not_found(e):
                raise StorageError(
                    f"Bucket '{self.bucket}' is not accessible: {e}") from e
        except BotoCoreError as e:
            raise StorageError(
                f"Object store for bucket '{self.bucket}' is unreachable: {e}") from e

        kwargs: dict[str, Any] = {"Bucket": self.bucket}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {
                "LocationConstraint": self.region}
        try:
            await self._call("create_bucket", **kwargs)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(
                f"Failed to create bucket '{self.bucket}': {e}") from e
        logger.info(f"Bucket '{self.bucket}' created successfully")
