"""
Configuration loading for dbbackup.

A single immutable Config snapshot is built at process start from:
1. Built-in defaults
2. The JSON file written by `dbbackup configure` (optional)
3. Environment variables (a .env file is loaded first, without overriding)

The snapshot is passed explicitly into executors and adapters.
"""

import os
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv


DEFAULT_CONFIG_FILE = 'dbbackup.json'
DEFAULT_TOOL_TIMEOUT = 3600
ENCRYPTED_PREFIX = 'enc:'


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or invalid."""
    pass


@dataclass(frozen=True)
class MySQLConfig:
    host: str = 'localhost'
    port: int = 3306
    user: str = 'root'
    password: str = ''
    database: str = 'test'
    backup_path: str = 'backup.sql'


@dataclass(frozen=True)
class PostgresConfig:
    host: str = 'localhost'
    port: int = 5432
    user: str = 'postgres'
    password: str = ''
    database: str = 'test'
    backup_path: str = 'backup.dump'


@dataclass(frozen=True)
class MongoDBConfig:
    uri: str = 'mongodb://localhost:27017'
    backup_path: str = 'backup.archive'


@dataclass(frozen=True)
class SQLiteConfig:
    filename: str = 'test.db'
    backup_filename: str = 'backup.db'

    @property
    def backup_path(self) -> str:
        return self.backup_filename


@dataclass(frozen=True)
class S3Config:
    bucket: str = ''
    region: str = 'us-east-1'
    endpoint_url: str = ''


@dataclass(frozen=True)
class GCSConfig:
    bucket: str = ''
    project_id: str = ''


@dataclass(frozen=True)
class AzureConfig:
    container: str = ''
    connection_string: str = ''

    @property
    def bucket(self) -> str:
        return self.container


@dataclass(frozen=True)
class CloudConfig:
    provider: str = 's3'
    s3: S3Config = field(default_factory=S3Config)
    google: GCSConfig = field(default_factory=GCSConfig)
    azure: AzureConfig = field(default_factory=AzureConfig)


@dataclass(frozen=True)
class Config:
    """Read-only configuration snapshot shared by every component."""

    mysql: MySQLConfig = field(default_factory=MySQLConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    mongodb: MongoDBConfig = field(default_factory=MongoDBConfig)
    sqlite: SQLiteConfig = field(default_factory=SQLiteConfig)
    cloud: CloudConfig = field(default_factory=CloudConfig)
    slack_webhook_url: str = ''
    tool_timeout: int = DEFAULT_TOOL_TIMEOUT
    log_dir: str = 'logs'

    def database(self, kind):
        """Return the per-kind settings for a DatabaseKind (or its string value)."""
        value = getattr(kind, 'value', kind)
        try:
            return getattr(self, value)
        except AttributeError:
            raise ConfigurationError(f"Unsupported database type: {value}")

    def backup_paths(self) -> Dict[str, str]:
        """Configured local artifact path per database kind."""
        return {
            'mysql': self.mysql.backup_path,
            'postgres': self.postgres.backup_path,
            'mongodb': self.mongodb.backup_path,
            'sqlite': self.sqlite.backup_filename,
        }

    def secrets(self) -> list:
        """Non-empty credential values that must never be logged verbatim."""
        values = [
            self.mysql.password,
            self.postgres.password,
            self.mongodb.uri,
            self.cloud.azure.connection_string,
            self.slack_webhook_url,
        ]
        return [v for v in values if v]


# Environment variable -> (section, key)
ENV_MAPPING = {
    'MYSQL_HOST': ('mysql', 'host'),
    'MYSQL_PORT': ('mysql', 'port'),
    'MYSQL_USER': ('mysql', 'user'),
    'MYSQL_PASSWORD': ('mysql', 'password'),
    'MYSQL_DATABASE': ('mysql', 'database'),
    'MYSQL_BACKUP_PATH': ('mysql', 'backup_path'),
    'POSTGRES_HOST': ('postgres', 'host'),
    'POSTGRES_PORT': ('postgres', 'port'),
    'POSTGRES_USER': ('postgres', 'user'),
    'POSTGRES_PASSWORD': ('postgres', 'password'),
    'POSTGRES_DATABASE': ('postgres', 'database'),
    'POSTGRES_BACKUP_PATH': ('postgres', 'backup_path'),
    'MONGODB_URI': ('mongodb', 'uri'),
    'MONGODB_BACKUP_PATH': ('mongodb', 'backup_path'),
    'SQLITE_DATABASE': ('sqlite', 'filename'),
    'SQLITE_BACKUP_DATABASE': ('sqlite', 'backup_filename'),
    'CLOUD_PROVIDER': ('cloud', 'provider'),
    'S3_BUCKET': ('s3', 'bucket'),
    'S3_REGION': ('s3', 'region'),
    'S3_ENDPOINT_URL': ('s3', 'endpoint_url'),
    'GCS_BUCKET': ('google', 'bucket'),
    'GCS_PROJECT_ID': ('google', 'project_id'),
    'AZURE_CONTAINER': ('azure', 'container'),
    'AZURE_CONNECTION_STRING': ('azure', 'connection_string'),
    'SLACK_WEBHOOK_URL': ('general', 'slack_webhook_url'),
    'DBBACKUP_TOOL_TIMEOUT': ('general', 'tool_timeout'),
    'DBBACKUP_LOG_DIR': ('general', 'log_dir'),
}

SECTION_TYPES = {
    'mysql': MySQLConfig,
    'postgres': PostgresConfig,
    'mongodb': MongoDBConfig,
    'sqlite': SQLiteConfig,
    's3': S3Config,
    'google': GCSConfig,
    'azure': AzureConfig,
}

INTEGER_FIELDS = {('mysql', 'port'), ('postgres', 'port'), ('general', 'tool_timeout')}


def read_config_file(path: str) -> Dict[str, Dict[str, Any]]:
    """
    Read the JSON file written by the configuration wizard.

    Args:
        path: Path to the JSON config file

    Returns:
        Dict of section name -> settings dict (missing file gives {})

    Raises:
        ConfigurationError: If the file is not valid JSON
    """
    if not os.path.exists(path):
        return {}

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to read config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")

    sections = {}
    for name, values in data.items():
        if name == 'cloud' and isinstance(values, dict):
            # Nested provider sections live under "cloud" in the file
            general_cloud = {}
            for key, value in values.items():
                if key in SECTION_TYPES and isinstance(value, dict):
                    sections[key] = dict(value)
                else:
                    general_cloud[key] = value
            sections['cloud'] = general_cloud
        elif isinstance(values, dict):
            sections[name] = dict(values)
        else:
            sections.setdefault('general', {})[name] = values

    return sections


def _decrypt_values(sections: Dict[str, Dict[str, Any]], environ: Mapping[str, str]):
    """Decrypt `enc:` values written by the configuration wizard."""
    encrypted = [
        (section, key)
        for section, values in sections.items()
        for key, value in values.items()
        if isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)
    ]
    if not encrypted:
        return

    from dbbackup.utils.crypto import get_crypto_manager

    cm = get_crypto_manager(environ)
    for section, key in encrypted:
        token = sections[section][key][len(ENCRYPTED_PREFIX):]
        try:
            sections[section][key] = cm.decrypt(token)
        except Exception as e:
            raise ConfigurationError(f"Failed to decrypt {section}.{key}: {e}")


def _coerce_int(section: str, key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid integer for {section}.{key}: {value!r}")


def load_config(
    config_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[str] = None
) -> Config:
    """
    Build the configuration snapshot.

    Args:
        config_file: JSON config path (defaults to $DBBACKUP_CONFIG or ./dbbackup.json)
        environ: Environment mapping (defaults to os.environ after loading .env)
        env_file: Optional dotenv file to load before reading os.environ

    Returns:
        Config instance

    Raises:
        ConfigurationError: If the file or a numeric setting is invalid
    """
    if environ is None:
        # .env in the working directory unless a file is given
        load_dotenv(dotenv_path=env_file or '.env', override=False)
        environ = os.environ

    if config_file is None:
        config_file = environ.get('DBBACKUP_CONFIG', DEFAULT_CONFIG_FILE)

    sections = read_config_file(config_file)

    for env_name, (section, key) in ENV_MAPPING.items():
        value = environ.get(env_name)
        if value is not None and value != '':
            sections.setdefault(section, {})[key] = value

    _decrypt_values(sections, environ)

    built = {}
    for section, cls in SECTION_TYPES.items():
        values = sections.get(section, {})
        known = {k: v for k, v in values.items() if k in cls.__dataclass_fields__}
        for key in list(known):
            if (section, key) in INTEGER_FIELDS:
                known[key] = _coerce_int(section, key, known[key])
            elif known[key] is None:
                del known[key]
            else:
                known[key] = str(known[key])
        built[section] = cls(**known)

    cloud_values = sections.get('cloud', {})
    cloud = CloudConfig(
        provider=str(cloud_values.get('provider') or 's3').lower(),
        s3=built['s3'],
        google=built['google'],
        azure=built['azure']
    )

    general = sections.get('general', {})
    tool_timeout = general.get('tool_timeout', DEFAULT_TOOL_TIMEOUT)

    return Config(
        mysql=built['mysql'],
        postgres=built['postgres'],
        mongodb=built['mongodb'],
        sqlite=built['sqlite'],
        cloud=cloud,
        slack_webhook_url=str(general.get('slack_webhook_url') or ''),
        tool_timeout=_coerce_int('general', 'tool_timeout', tool_timeout),
        log_dir=str(general.get('log_dir') or 'logs')
    )
