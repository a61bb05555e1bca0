"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Resolve database adapter (and cloud target, if requested); validate config
2. Dump the database to the local artifact path
3. Compress the artifact to <path>.gz
4. Upload the .gz artifact (if a cloud target was requested)
5. Notify success/failure and record the outcome

Any step failure short-circuits the remaining steps. Nothing is retried here.
"""

import os
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Optional, Tuple

from dbbackup.config import Config
from dbbackup.models import BackupRequest, DatabaseKind, OperationResult
from dbbackup.utils.slack import SlackNotifier
from .compression import compress_file, compressed_path, get_file_size
from .databases import create_adapter, redact
from .storage import create_storage, resolve_cloud_target


logger = logging.getLogger(__name__)

_artifact_locks: Dict[Tuple[str, str], threading.Lock] = {}
_artifact_locks_guard = threading.Lock()


@contextmanager
def artifact_lock(kind: DatabaseKind, path: str):
    """
    Serialize runs that write the same artifact.

    Concurrent scheduled runs against different databases proceed in
    parallel; two runs against the same (kind, path) wait for each other.
    """
    key = (kind.value, os.path.abspath(path))
    with _artifact_locks_guard:
        lock = _artifact_locks.setdefault(key, threading.Lock())
    with lock:
        yield


class BaseExecutor:
    """Shared result bookkeeping and logging for backup/restore executors."""

    operation = None

    def __init__(self, request, config: Config, notifier: Optional[SlackNotifier] = None):
        """
        Initialize executor.

        Args:
            request: BackupRequest or RestoreRequest
            config: Configuration snapshot
            notifier: Notifier (defaults to Slack with the configured webhook)
        """
        self.request = request
        self.config = config
        self.notifier = notifier if notifier is not None else SlackNotifier(config.slack_webhook_url)
        self.result = None
        self.logs = []

    def execute(self) -> OperationResult:
        """
        Run the workflow.

        Returns:
            OperationResult with status 'success' or 'failed'. Errors are
            recorded on the result, never raised.
        """
        kind = getattr(self.request.database_kind, 'value', self.request.database_kind)
        self.result = OperationResult(
            operation=self.operation,
            database_kind=str(kind),
            dry_run=self.request.dry_run,
            started_at=datetime.utcnow()
        )

        self._log(f"Starting {self.operation} ({kind}){' [dry-run]' if self.request.dry_run else ''}")

        try:
            self._execute_workflow()

            self.result.status = 'success'
            self.result.completed_at = datetime.utcnow()
            self._log(f"{self.operation.capitalize()} completed successfully")

        except Exception as e:
            self.result.status = 'failed'
            self.result.completed_at = datetime.utcnow()
            self.result.error = e
            self.result.error_message = self._redact(str(e))
            self._log(f"{self.operation.capitalize()} failed: {type(e).__name__}: {self.result.error_message}",
                      level=logging.ERROR)

        finally:
            self.result.logs = list(self.logs)

        self._notify()
        return self.result

    def _execute_workflow(self):
        raise NotImplementedError

    def _notify(self):
        if self.request.dry_run:
            return

        if self.result.succeeded:
            message = f"{self.operation.capitalize()} of {self.result.database_kind} completed successfully"
        else:
            message = f"{self.operation.capitalize()} of {self.result.database_kind} failed: {self.result.error_message}"

        try:
            self.notifier.notify(message)
        except Exception as e:
            logger.error(f"Notification failed: {e}")

    def _redact(self, text: str) -> str:
        return redact(text, self.config.secrets())

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the module logger
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


class BackupExecutor(BaseExecutor):
    """
    Orchestrates the complete backup workflow for a request.
    """

    operation = 'backup'

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        dry_run = self.request.dry_run

        # Step 1: Resolve
        kind = DatabaseKind.parse(self.request.database_kind)
        adapter = create_adapter(kind, self.config)
        adapter.validate()

        storage = None
        bucket = None
        if self.request.cloud_target is not None:
            provider, bucket = resolve_cloud_target(self.request.cloud_target, self.config.cloud)
            self._log(f"Cloud target: {provider.value} bucket {bucket}")
            if not dry_run:
                storage = create_storage(provider, self.config.cloud)

        with artifact_lock(kind, adapter.backup_path):
            # Step 2: Dump
            self._log(f"Backing up {kind.value} to {adapter.backup_path}")
            if dry_run:
                self._log(f"[dry-run] {adapter.describe_backup()}")
            artifact_path = adapter.backup(dry_run=dry_run)
            self.result.artifact_path = artifact_path

            # Step 3: Compress
            gz_path = compressed_path(artifact_path)
            if dry_run:
                self._log(f"[dry-run] Would compress {artifact_path} -> {gz_path}")
            else:
                self._log(f"Compressing {artifact_path}")
                gz_path = compress_file(artifact_path)
                self.result.file_size_bytes = get_file_size(gz_path)
                self._log(f"Compressed artifact: {gz_path} ({self.result.file_size_bytes / 1024 / 1024:.2f} MB)")
            self.result.compressed_path = gz_path

            # Step 4: Upload
            if self.request.cloud_target is None:
                self._log("Cloud target not configured, skipping upload")
            elif dry_run:
                self._log(f"[dry-run] Would upload {gz_path} to bucket {bucket}")
            else:
                self._log(f"Uploading {gz_path} to bucket {bucket}")
                self.result.remote_key = storage.upload(gz_path, bucket)
                self._log(f"Uploaded: {self.result.remote_key}")


def execute_backup(request: BackupRequest, config: Config,
                   notifier: Optional[SlackNotifier] = None) -> OperationResult:
    """
    Execute a backup request.

    Args:
        request: BackupRequest to run
        config: Configuration snapshot
        notifier: Optional notifier override

    Returns:
        OperationResult with execution results
    """
    executor = BackupExecutor(request, config, notifier=notifier)
    return executor.execute()
