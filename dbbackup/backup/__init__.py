"""
Backup module for dbbackup.

This module handles the core backup functionality including:
- Database adapters (MySQL, PostgreSQL, MongoDB, SQLite)
- Compression
- Cloud storage (S3, Google Cloud Storage, Azure Blob)
- Backup and restore orchestration
"""

from .executor import BackupExecutor, execute_backup
from .restore import RestoreExecutor, execute_restore
from .databases import create_adapter, ToolExecutionError
from .compression import compress_file, decompress_file, CompressionError
from .storage import (
    create_storage,
    StorageError,
    AuthenticationError,
    NotFoundError,
    TransientNetworkError,
)

__all__ = [
    'BackupExecutor',
    'RestoreExecutor',
    'execute_backup',
    'execute_restore',
    'create_adapter',
    'ToolExecutionError',
    'compress_file',
    'decompress_file',
    'CompressionError',
    'create_storage',
    'StorageError',
    'AuthenticationError',
    'NotFoundError',
    'TransientNetworkError',
]
