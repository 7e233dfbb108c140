"""Stored files: records, access policy, lifecycle and folders."""

from .models import (
    AccessContext, ExpiredReason, FileRecord, Folder, UploadMetadata, Visibility,
)
from .policy import AccessPolicyEvaluator, Allow, Deny
from .repository import FileRepository, FolderRepository
from .sql_repository import SQLFileRepository, SQLFolderRepository
from .lifecycle import FileLifecycleManager
from .folders import FolderAggregator

__all__ = [
    'AccessContext', 'ExpiredReason', 'FileRecord', 'Folder',
    'UploadMetadata', 'Visibility',
    'AccessPolicyEvaluator', 'Allow', 'Deny',
    'FileRepository', 'FolderRepository',
    'SQLFileRepository', 'SQLFolderRepository',
    'FileLifecycleManager', 'FolderAggregator',
]
