"""Command line entry point for the thumbnail offload worker."""

from __future__ import annotations

import asyncio
import signal

import click

from sharehub.config.settings import ConfigManager, get_config_manager
from sharehub.core.database import Database
from sharehub.core.datasource import open_datasource
from sharehub.core.errors import StorageError
from sharehub.core.files.sql_repository import SQLFileRepository
from sharehub.core.jobs import JobDispatcher, SQLJobQueue
from sharehub.logging.setup import get_logger, setup_logging
from .thumbnails import ThumbnailOffloadWorker

logger = get_logger(__name__)


def build_worker(
        config_manager: ConfigManager, datasource,
        database: Database) -> ThumbnailOffloadWorker:
    thumbnails = config_manager.thumbnails
    dispatcher = JobDispatcher(
        SQLJobQueue(database),
        max_attempts=thumbnails.max_attempts,
        poll_interval=thumbnails.poll_interval_seconds,
    )
    return ThumbnailOffloadWorker(
        dispatcher,
        datasource,
        SQLFileRepository(database),
        width=thumbnails.width,
        height=thumbnails.height,
        quality=thumbnails.quality,
        decode_timeout=thumbnails.decode_timeout_seconds,
        max_source_bytes=thumbnails.max_source_mb * 1024 * 1024,
        stale_after=thumbnails.stale_after_seconds,
        dequeue_timeout=thumbnails.poll_interval_seconds,
    )


async def run_worker(config_manager: ConfigManager) -> None:
    datasource = await open_datasource(
        config_manager.datasource, config_manager.files.chunk_size_kb * 1024)
    database = Database(config_manager.database_connection_string)
    worker = build_worker(config_manager, datasource, database)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await worker.run(stop_event)
    finally:
        database.dispose()


@click.command()
@click.option("--config", "config_path", type=click.Path(exists=True),
              default=None, help="Path to config.yaml")
def main(config_path):
    """Run the thumbnail offload worker until interrupted."""
    config_manager = get_config_manager()
    config_manager.load(config_path)
    setup_logging(config_manager.logging_config)

    try:
        asyncio.run(run_worker(config_manager))
    except StorageError as e:
        logger.error(f"Datasource unavailable: {e}")
        raise click.ClickException(f"Datasource unavailable: {e}")


if __name__ == "__main__":
    main()
