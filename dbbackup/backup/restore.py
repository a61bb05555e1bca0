"""
Restore executor - orchestrates the complete restore workflow.

Workflow:
1. Resolve database adapter (and cloud source, if requested); validate config
2. Download <artifact>.gz from cloud storage (if requested)
3. Decompress any <path>.gz among the configured backup paths
4. Run the database restore
5. Notify success/failure and record the outcome
"""

import os
from typing import List, Optional

from dbbackup.config import Config
from dbbackup.models import DatabaseKind, OperationResult, RestoreRequest
from dbbackup.utils.slack import SlackNotifier
from .compression import compressed_path, decompress_file
from .databases import create_adapter
from .executor import BaseExecutor, artifact_lock
from .storage import create_storage, resolve_cloud_target


class RestoreExecutor(BaseExecutor):
    """
    Orchestrates the complete restore workflow for a request.
    """

    operation = 'restore'

    def _execute_workflow(self):
        """Execute the main restore workflow steps."""
        dry_run = self.request.dry_run
        source_path = self.request.source_path

        # An explicit .gz source restores from its decompressed sibling
        artifact_override = None
        if source_path:
            artifact_override = source_path[:-3] if source_path.endswith('.gz') else source_path

        # Step 1: Resolve
        kind = DatabaseKind.parse(self.request.database_kind)
        adapter = create_adapter(kind, self.config, backup_path=artifact_override)
        adapter.validate()
        self.result.artifact_path = adapter.backup_path

        storage = None
        bucket = None
        if self.request.cloud_target is not None:
            provider, bucket = resolve_cloud_target(self.request.cloud_target, self.config.cloud)
            self._log(f"Cloud source: {provider.value} bucket {bucket}")
            if not dry_run:
                storage = create_storage(provider, self.config.cloud)

        with artifact_lock(kind, adapter.backup_path):
            # Step 2: Download
            if self.request.cloud_target is not None:
                local_gz = compressed_path(adapter.backup_path)
                remote_key = os.path.basename(local_gz)
                if dry_run:
                    self._log(f"[dry-run] Would download {remote_key} from bucket {bucket} to {local_gz}")
                else:
                    self._log(f"Downloading {remote_key} from bucket {bucket}")
                    storage.download(remote_key, bucket, local_gz)
                    self.result.remote_key = remote_key
                    self.result.compressed_path = local_gz
                    self._log(f"Downloaded to {local_gz}")

            # Step 3: Decompress
            for gz_path in self._compressed_candidates(adapter.backup_path):
                if dry_run:
                    self._log(f"[dry-run] Would decompress {gz_path}")
                    continue
                self._log(f"Decompressing {gz_path}")
                decompress_file(gz_path)

            # Step 4: Restore
            self._log(f"Restoring {kind.value} from {adapter.backup_path}")
            if dry_run:
                self._log(f"[dry-run] {adapter.describe_restore()}")
            adapter.restore(dry_run=dry_run)

    def _compressed_candidates(self, artifact_path: str) -> List[str]:
        """Existing .gz artifacts: every configured backup path plus this run's artifact."""
        paths = list(self.config.backup_paths().values())
        if artifact_path not in paths:
            paths.append(artifact_path)

        candidates = []
        for path in paths:
            gz_path = compressed_path(path)
            if path and gz_path not in candidates and os.path.isfile(gz_path):
                candidates.append(gz_path)
        return candidates


def execute_restore(request: RestoreRequest, config: Config,
                    notifier: Optional[SlackNotifier] = None) -> OperationResult:
    """
    Execute a restore request.

    Args:
        request: RestoreRequest to run
        config: Configuration snapshot
        notifier: Optional notifier override

    Returns:
        OperationResult with execution results
    """
    executor = RestoreExecutor(request, config, notifier=notifier)
    return executor.execute()
