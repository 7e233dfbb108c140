"""Datasource selection at startup."""

from __future__ import annotations

from sharehub.config.settings import DatasourceSettings
from sharehub.logging.setup import get_logger
from .backend import DEFAULT_CHUNK_SIZE, Datasource
from .local_backend import LocalDatasource
from .s3_backend import S3Datasource

logger = get_logger(__name__)


def create_datasource(
        settings: DatasourceSettings,
        chunk_size: int = DEFAULT_CHUNK_SIZE) -> Datasource:
    """
    Build the one datasource this process will use.

    Args:
        settings: Datasource section of the application settings
        chunk_size: Streaming chunk size in bytes

    Returns:
        Configured Datasource (not yet checked for reachability)

    Raises:
        ValueError: If the datasource type is unknown
    """
    if settings.type == "local":
        datasource = LocalDatasource(settings.local.base_dir, chunk_size)
    elif settings.type == "s3":
        s3 = settings.s3
        datasource = S3Datasource(
            bucket=s3.bucket,
            endpoint_url=s3.endpoint_url,
            region=s3.region,
            access_key_id=s3.access_key_id,
            secret_access_key=s3.secret_access_key,
            force_path_style=s3.force_path_style,
            part_size=s3.part_size_mb * 1024 * 1024,
            chunk_size=chunk_size,
        )
    else:
        logger.error(f"Unsupported datasource type: {settings.type}")
        raise ValueError(f"Unsupported datasource type: {settings.type}")

    logger.info(f"Using {datasource.name} datasource")
    return datasource


async def open_datasource(
        settings: DatasourceSettings,
        chunk_size: int = DEFAULT_CHUNK_SIZE) -> Datasource:
    """
    Build the datasource and verify it is reachable.

    Raises:
        StorageError: If the backend cannot be used. Callers treat this as
            fatal and refuse to start.
    """
    datasource = create_datasource(settings, chunk_size)
    await datasource.check()
    return datasource
