"""
Thumbnail offload worker.

Runs in its own process (see sharehub.offload.cli) and talks to the API
process only through the job queue, the file repository and the
datasource. Image decoding happens in a thread under a timeout, so a
slow or hostile image can only stall this worker, never a request.
"""

from __future__ import annotations

import asyncio
import io

from PIL import Image, ImageOps

from sharehub.core.datasource import Datasource, read_all, retry_once
from sharehub.core.errors import NotFoundError, StorageError, ThumbnailError
from sharehub.core.files.models import thumbnail_storage_key
from sharehub.core.files.repository import FileRepository
from sharehub.core.jobs.dispatcher import JobDispatcher
from sharehub.core.jobs.models import ThumbnailJob
from sharehub.logging.setup import get_logger

logger = get_logger(__name__)

SUPPORTED_MIME_TYPES = frozenset({
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
})


def is_supported(mime_type: str | None) -> bool:
    if not mime_type:
        return False
    return mime_type.split(";")[0].strip().lower() in SUPPORTED_MIME_TYPES


def render_thumbnail(
        data: bytes, size: tuple[int, int] = (320, 320),
        quality: int = 80) -> bytes:
    """
    Decode an image and return a JPEG preview that fits inside size.

    Raises:
        ThumbnailError: If the payload cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(data)) as source:
            image = ImageOps.exif_transpose(source)
            image.thumbnail(size)
            if image.mode != "RGB":
                image = image.convert("RGB")
            output = io.BytesIO()
            image.save(output, format="JPEG", quality=quality)
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise ThumbnailError(f"Cannot decode image: {e}") from e
    return output.getvalue()


class ThumbnailOffloadWorker:
    """
    Consumes thumbnail jobs until stopped.

    Per job:
    - unsupported MIME type or missing source: ack, no artifact
    - otherwise render and write thumbnails/<file_id>.jpg, then record the
      key on the file (or remove the artifact if the file is gone)
    - any other failure: nack, which drops the job past the retry limit
    """

    def __init__(
        self,
        dispatcher: JobDispatcher,
        datasource: Datasource,
        files: FileRepository,
        width: int = 320,
        height: int = 320,
        quality: int = 80,
        decode_timeout: float = 30.0,
        max_source_bytes: int = 50 * 1024 * 1024,
        stale_after: float = 600.0,
        dequeue_timeout: float = 1.0,
    ):
        self.dispatcher = dispatcher
        self.datasource = datasource
        self.files = files
        self.size = (width, height)
        self.quality = quality
        self.decode_timeout = decode_timeout
        self.max_source_bytes = max_source_bytes
        self.stale_after = stale_after
        self.dequeue_timeout = dequeue_timeout

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """
        Process jobs until stop_event is set.

        Queue and repository errors are logged and the loop carries on
        after one poll interval; a job left claimed by such an error is
        picked up again by stale recovery.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info("Thumbnail worker started")

        recovered = False
        while not stop_event.is_set():
            try:
                if not recovered:
                    self.dispatcher.recover_stale(self.stale_after)
                    recovered = True
                job = await self.dispatcher.dequeue(timeout=self.dequeue_timeout)
                if job is None:
                    continue
                await self.process(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in thumbnail worker loop: {e}", exc_info=True)
                await asyncio.sleep(self.dispatcher.poll_interval)

        logger.info("Thumbnail worker stopped")

    async def process(self, job: ThumbnailJob) -> bool:
        """
        Handle one claimed job.

        Returns:
            True if a thumbnail was written and recorded
        """
        if not is_supported(job.mime_hint):
            logger.debug(
                f"No thumbnail for file {job.file_id} ({job.mime_hint})")
            self.dispatcher.ack(job.job_id)
            return False

        try:
            written = await self._generate(job)
        except NotFoundError:
            logger.info(f"Source of file {job.file_id} is gone, dropping job")
            self.dispatcher.ack(job.job_id)
            return False
        except (ThumbnailError, StorageError) as e:
            logger.warning(f"Thumbnail for file {job.file_id} failed: {e}")
            self.dispatcher.nack(job.job_id, str(e))
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error for thumbnail job {job.job_id}: {e}",
                exc_info=True)
            self.dispatcher.nack(job.job_id, repr(e))
            return False

        self.dispatcher.ack(job.job_id)
        return written

    async def _generate(self, job: ThumbnailJob) -> bool:
        record = self.files.get(job.file_id)
        if record is None:
            raise NotFoundError(f"File '{job.file_id}' not found")
        if record.size_bytes > self.max_source_bytes:
            logger.info(
                f"File {job.file_id} too large for a thumbnail "
                f"({record.size_bytes} bytes)")
            return False

        stream = await retry_once(self.datasource.get, job.source_key)
        data = await read_all(stream, self.max_source_bytes)

        try:
            thumbnail = await asyncio.wait_for(
                asyncio.to_thread(
                    render_thumbnail, data, self.size, self.quality),
                timeout=self.decode_timeout,
            )
        except asyncio.TimeoutError:
            raise ThumbnailError(
                f"Decoding timed out after {self.decode_timeout}s")

        key = thumbnail_storage_key(job.file_id)
        await self.datasource.put(key, thumbnail)

        if not self.files.update(job.file_id, {"thumbnail_key": key}):
            # File deleted while we were rendering
            await self.datasource.delete(key)
            logger.info(f"File {job.file_id} deleted during processing")
            return False

        logger.info(f"Thumbnail written for file {job.file_id}")
        return True
