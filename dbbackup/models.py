from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from dbbackup.config import ConfigurationError


class DatabaseKind(Enum):
    """Supported database engines"""
    MYSQL = 'mysql'
    POSTGRES = 'postgres'
    MONGODB = 'mongodb'
    SQLITE = 'sqlite'

    @classmethod
    def parse(cls, value) -> 'DatabaseKind':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(f"Unsupported database type: {value}")


class CloudProvider(Enum):
    """Supported object storage providers"""
    S3 = 's3'
    GOOGLE = 'google'
    AZURE = 'azure'

    @classmethod
    def parse(cls, value) -> 'CloudProvider':
        if isinstance(value, cls):
            return value
        normalized = str(value or '').strip().lower()
        # Names written by older config wizards
        aliases = {'aws': 's3', 'gcs': 'google', 'gcp': 'google'}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(f"Unsupported cloud provider: {value}")


@dataclass(frozen=True)
class CloudTarget:
    """Where an artifact goes to or comes from. Empty fields fall back to config."""
    provider: Optional[str] = None
    bucket_name: Optional[str] = None


@dataclass(frozen=True)
class BackupRequest:
    database_kind: DatabaseKind
    cloud_target: Optional[CloudTarget] = None
    dry_run: bool = False


@dataclass(frozen=True)
class RestoreRequest:
    database_kind: DatabaseKind
    cloud_target: Optional[CloudTarget] = None
    dry_run: bool = False
    source_path: Optional[str] = None


@dataclass(frozen=True)
class ScheduleRequest:
    cron_expression: str
    backup_request: BackupRequest


@dataclass
class OperationResult:
    """Outcome and execution log of a single backup or restore run"""
    operation: str
    database_kind: str
    status: str = 'running'  # running, success, failed
    dry_run: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    artifact_path: Optional[str] = None
    compressed_path: Optional[str] = None
    remote_key: Optional[str] = None
    file_size_bytes: Optional[int] = None
    error: Optional[BaseException] = None
    error_message: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    def __repr__(self):
        return f'<OperationResult {self.operation} db={self.database_kind} status={self.status}>'
