"""Datasources: uniform byte-stream storage over physical backends."""

from __future__ import annotations

from .backend import Datasource, iter_chunks, read_all, retry_once, validate_key
from .local_backend import LocalDatasource
from .s3_backend import S3Datasource
from .factory import create_datasource, open_datasource

__all__ = [
    "Datasource",
    "LocalDatasource",
    "S3Datasource",
    "create_datasource",
    "open_datasource",
    "iter_chunks",
    "read_all",
    "retry_once",
    "validate_key",
]
