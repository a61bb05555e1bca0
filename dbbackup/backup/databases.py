"""
Database adapters for backup and restore operations.

Supports:
- MySQLAdapter: mysqldump / mysql
- PostgresAdapter: pg_dump / pg_restore (custom format)
- MongoDBAdapter: mongodump / mongorestore (single archive file)
- SQLiteAdapter: direct file copy

Credentials never go on the command line. MySQL and PostgreSQL receive the
password through the child's environment (MYSQL_PWD / PGPASSWORD); MongoDB
reads its URI from a temporary, owner-only --config file.
"""

import os
import re
import json
import shutil
import logging
import subprocess
import tempfile
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from dbbackup.config import Config, ConfigurationError
from dbbackup.models import DatabaseKind


logger = logging.getLogger(__name__)

REDACTED = '***'
_URI_USERINFO = re.compile(r'([a-zA-Z][a-zA-Z0-9+.\-]*://[^:/@\s]+):[^@\s]*@')


class ToolExecutionError(RuntimeError):
    """Raised when a vendor dump/restore tool fails to run or exits non-zero."""

    def __init__(self, message: str, command: str = '', returncode: Optional[int] = None, stderr: str = ''):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """
    Mask credentials in a piece of text.

    Known secret values are replaced outright, then any remaining
    `scheme://user:password@` userinfo is masked.
    """
    if not text:
        return text
    # Longest first so a secret containing another is fully masked
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return _URI_USERINFO.sub(r'\1:' + REDACTED + '@', text)


class DatabaseAdapter:
    """
    Base class for database adapters.

    Subclasses declare their required settings and implement the actual
    backup/restore work.
    """

    kind: DatabaseKind = None
    required_fields: Tuple[str, ...] = ()

    def __init__(self, config: Config, backup_path: Optional[str] = None):
        """
        Initialize adapter.

        Args:
            config: Configuration snapshot
            backup_path: Artifact path override (defaults to the configured path)
        """
        self.config = config
        self.settings = config.database(self.kind)
        self.backup_path = backup_path or self.settings.backup_path
        self.timeout = config.tool_timeout

    def validate(self):
        """
        Check that every required setting is present.

        Raises:
            ConfigurationError: If any required setting is empty
        """
        missing = [name for name in self.required_fields if not getattr(self.settings, name, None)]
        if not self.backup_path:
            missing.append('backup_path')
        if missing:
            raise ConfigurationError(
                f"{self.kind.value} configuration is not complete (missing: {', '.join(missing)})"
            )

    def backup(self, dry_run: bool = False) -> str:
        """Create the backup artifact. Returns its path."""
        raise NotImplementedError

    def restore(self, dry_run: bool = False) -> None:
        """Restore the database from the artifact at backup_path."""
        raise NotImplementedError

    def describe_backup(self) -> str:
        raise NotImplementedError

    def describe_restore(self) -> str:
        raise NotImplementedError

    @property
    def secrets(self) -> List[str]:
        return self.config.secrets()

    def _redact(self, text: str) -> str:
        return redact(text, self.secrets)


class CommandAdapter(DatabaseAdapter):
    """Adapter that shells out to a vendor dump/restore executable."""

    def _backup_command(self) -> List[str]:
        raise NotImplementedError

    def _restore_command(self) -> List[str]:
        raise NotImplementedError

    def _child_env(self) -> Dict[str, str]:
        return os.environ.copy()

    @contextmanager
    def _prepared(self):
        """Hook for per-invocation setup (temp files). Yields extra argv."""
        yield []

    def describe_backup(self) -> str:
        return self._redact(' '.join(self._backup_command()))

    def describe_restore(self) -> str:
        return self._redact(' '.join(self._restore_command()))

    def backup(self, dry_run: bool = False) -> str:
        self.validate()

        if dry_run:
            logger.info(f"[dry-run] Would run: {self.describe_backup()}")
            return self.backup_path

        parent = os.path.dirname(os.path.abspath(self.backup_path))
        os.makedirs(parent, exist_ok=True)

        self._run(self._backup_command())

        if not os.path.exists(self.backup_path):
            raise ToolExecutionError(
                f"{self.kind.value} backup produced no artifact at {self.backup_path}",
                command=self.describe_backup()
            )

        logger.info(f"{self.kind.value} backup completed successfully: {self.backup_path}")
        return self.backup_path

    def restore(self, dry_run: bool = False) -> None:
        self.validate()

        if dry_run:
            logger.info(f"[dry-run] Would run: {self.describe_restore()}")
            return

        if not os.path.exists(self.backup_path):
            raise FileNotFoundError(f"Backup file not found: {self.backup_path}")

        self._run(self._restore_command(), stdin_path=self._restore_stdin())
        logger.info(f"{self.kind.value} database restored successfully")

    def _restore_stdin(self) -> Optional[str]:
        return None

    def _run(self, command: List[str], stdin_path: Optional[str] = None):
        """
        Run a vendor tool and wait for it to finish.

        Raises:
            ToolExecutionError: On spawn failure, timeout or non-zero exit
        """
        with self._prepared() as extra_args:
            argv = command[:1] + extra_args + command[1:]
            shown = self._redact(' '.join(argv))
            logger.debug(f"Running: {shown}")

            stdin = open(stdin_path, 'rb') if stdin_path else None
            try:
                result = subprocess.run(
                    argv,
                    env=self._child_env(),
                    stdin=stdin,
                    capture_output=True,
                    text=True,
                    encoding='utf-8',
                    errors='replace',
                    timeout=self.timeout
                )
            except subprocess.TimeoutExpired:
                raise ToolExecutionError(
                    f"{argv[0]} timed out after {self.timeout}s and was terminated",
                    command=shown
                )
            except OSError as e:
                raise ToolExecutionError(
                    f"Failed to start {argv[0]}: {self._redact(str(e))}",
                    command=shown
                )
            finally:
                if stdin:
                    stdin.close()

        if result.returncode != 0:
            stderr = self._redact((result.stderr or '').strip())
            raise ToolExecutionError(
                f"{argv[0]} failed with exit code {result.returncode}: {stderr}",
                command=shown,
                returncode=result.returncode,
                stderr=stderr
            )


class MySQLAdapter(CommandAdapter):
    kind = DatabaseKind.MYSQL
    required_fields = ('host', 'user', 'password', 'database')

    def _connection_args(self) -> List[str]:
        s = self.settings
        return ['-h', s.host, '-P', str(s.port), '-u', s.user]

    def _child_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env['MYSQL_PWD'] = self.settings.password
        return env

    def _backup_command(self) -> List[str]:
        return (
            ['mysqldump']
            + self._connection_args()
            + ['--single-transaction', f'--result-file={self.backup_path}', self.settings.database]
        )

    def _restore_command(self) -> List[str]:
        return ['mysql'] + self._connection_args() + [self.settings.database]

    def _restore_stdin(self) -> Optional[str]:
        return self.backup_path

    def describe_restore(self) -> str:
        return f"{super().describe_restore()} < {self.backup_path}"


class PostgresAdapter(CommandAdapter):
    kind = DatabaseKind.POSTGRES
    required_fields = ('host', 'user', 'password', 'database')

    def _connection_args(self) -> List[str]:
        s = self.settings
        return ['-h', s.host, '-p', str(s.port), '-U', s.user]

    def _child_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env['PGPASSWORD'] = self.settings.password
        return env

    def _backup_command(self) -> List[str]:
        # Custom format so pg_restore can read it back
        return (
            ['pg_dump']
            + self._connection_args()
            + ['-F', 'c', '-f', self.backup_path, self.settings.database]
        )

    def _restore_command(self) -> List[str]:
        return (
            ['pg_restore']
            + self._connection_args()
            + ['-d', self.settings.database, '--clean', '--if-exists', self.backup_path]
        )


class MongoDBAdapter(CommandAdapter):
    kind = DatabaseKind.MONGODB
    required_fields = ('uri',)

    def _backup_command(self) -> List[str]:
        return ['mongodump', f'--archive={self.backup_path}']

    def _restore_command(self) -> List[str]:
        return ['mongorestore', f'--archive={self.backup_path}', '--drop']

    def describe_backup(self) -> str:
        return f"mongodump --uri={self._redact(self.settings.uri)} --archive={self.backup_path}"

    def describe_restore(self) -> str:
        return f"mongorestore --uri={self._redact(self.settings.uri)} --archive={self.backup_path} --drop"

    @contextmanager
    def _prepared(self):
        # The database tools accept a YAML --config file holding the URI
        fd, path = tempfile.mkstemp(prefix='dbbackup_mongo_', suffix='.yaml')
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(f"uri: {json.dumps(self.settings.uri)}\n")
            os.chmod(path, 0o600)
            yield [f'--config={path}']
        finally:
            try:
                os.remove(path)
            except OSError:
                pass


class SQLiteAdapter(DatabaseAdapter):
    kind = DatabaseKind.SQLITE
    required_fields = ('filename',)

    def describe_backup(self) -> str:
        return f"copy {self.settings.filename} -> {self.backup_path}"

    def describe_restore(self) -> str:
        return f"copy {self.backup_path} -> {self.settings.filename}"

    def backup(self, dry_run: bool = False) -> str:
        self.validate()

        if dry_run:
            logger.info(f"[dry-run] Would {self.describe_backup()}")
            return self.backup_path

        parent = os.path.dirname(os.path.abspath(self.backup_path))
        os.makedirs(parent, exist_ok=True)

        shutil.copyfile(self.settings.filename, self.backup_path)
        logger.info(f"SQLite backup completed successfully: {self.backup_path}")
        return self.backup_path

    def restore(self, dry_run: bool = False) -> None:
        self.validate()

        if dry_run:
            logger.info(f"[dry-run] Would {self.describe_restore()}")
            return

        shutil.copyfile(self.backup_path, self.settings.filename)
        logger.info("SQLite database restored successfully")


ADAPTERS = {
    DatabaseKind.MYSQL: MySQLAdapter,
    DatabaseKind.POSTGRES: PostgresAdapter,
    DatabaseKind.MONGODB: MongoDBAdapter,
    DatabaseKind.SQLITE: SQLiteAdapter,
}


def create_adapter(kind, config: Config, backup_path: Optional[str] = None) -> DatabaseAdapter:
    """
    Factory function to create the adapter for a database kind.

    Args:
        kind: DatabaseKind or its string value
        config: Configuration snapshot
        backup_path: Optional artifact path override

    Returns:
        DatabaseAdapter instance

    Raises:
        ConfigurationError: If kind is not supported
    """
    kind = DatabaseKind.parse(kind)
    return ADAPTERS[kind](config, backup_path=backup_path)
