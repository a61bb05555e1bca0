"""
Interactive configuration wizard (`dbbackup configure`).

Writes the JSON config file read by load_config(). Credentials are stored
Fernet-encrypted with an `enc:` prefix.
"""

import os
import json
import logging
from typing import Any, Dict, Optional

import click

from dbbackup.config import ENCRYPTED_PREFIX, read_config_file
from dbbackup.models import CloudProvider, DatabaseKind
from dbbackup.utils.crypto import CryptoManager, get_crypto_manager


logger = logging.getLogger(__name__)

DEFAULT_PORTS = {
    DatabaseKind.MYSQL: 3306,
    DatabaseKind.POSTGRES: 5432,
}

DEFAULT_BACKUP_FILES = {
    DatabaseKind.MYSQL: 'backup.sql',
    DatabaseKind.POSTGRES: 'backup.dump',
    DatabaseKind.MONGODB: 'backup.archive',
    DatabaseKind.SQLITE: 'backup.db',
}


def _encrypt(cm: CryptoManager, value: str) -> str:
    return f"{ENCRYPTED_PREFIX}{cm.encrypt(value)}" if value else value


def prompt_database_section(kind: DatabaseKind, cm: CryptoManager) -> Dict[str, Any]:
    """Ask for the connection settings of one database kind."""
    backup_dir = click.prompt('Local directory for storing backups',
                              default=os.path.join(os.getcwd(), 'backups'))
    backup_path = os.path.join(backup_dir, DEFAULT_BACKUP_FILES[kind])

    if kind is DatabaseKind.SQLITE:
        filename = click.prompt('Path to your SQLite database file')
        return {'filename': filename, 'backup_filename': backup_path}

    if kind is DatabaseKind.MONGODB:
        uri = click.prompt('MongoDB connection URI', default='mongodb://localhost:27017', hide_input=True)
        return {'uri': _encrypt(cm, uri), 'backup_path': backup_path}

    return {
        'host': click.prompt('Database host', default='localhost'),
        'port': click.prompt('Database port', default=DEFAULT_PORTS[kind], type=int),
        'user': click.prompt('Database username'),
        'password': _encrypt(cm, click.prompt('Database password', hide_input=True)),
        'database': click.prompt('Database name'),
        'backup_path': backup_path,
    }


def prompt_cloud_section(cm: CryptoManager) -> Optional[Dict[str, Any]]:
    """Ask for cloud storage settings; None when cloud storage is not wanted."""
    if not click.confirm('Do you want to use cloud storage?', default=False):
        return None

    provider = CloudProvider.parse(click.prompt(
        'Cloud provider',
        type=click.Choice([p.value for p in CloudProvider]),
        default=CloudProvider.S3.value
    ))
    bucket = click.prompt('Bucket (or container) name')

    if provider is CloudProvider.S3:
        settings = {
            'bucket': bucket,
            'region': click.prompt('Region', default='us-east-1'),
        }
    elif provider is CloudProvider.GOOGLE:
        settings = {
            'bucket': bucket,
            'project_id': click.prompt('GCP project ID', default='', show_default=False),
        }
    else:
        connection_string = click.prompt('Azure storage connection string', hide_input=True)
        settings = {
            'container': bucket,
            'connection_string': _encrypt(cm, connection_string),
        }

    return {'provider': provider.value, provider.value: settings}


def run_wizard(output_path: str, cm: Optional[CryptoManager] = None) -> str:
    """
    Prompt for settings and write them to the JSON config file.

    Existing sections for other databases are kept.

    Args:
        output_path: Config file to create or update
        cm: CryptoManager for secrets (defaults to the user's key)

    Returns:
        Path of the written config file
    """
    cm = cm or get_crypto_manager()

    existing = {}
    if os.path.exists(output_path):
        # Raises ConfigurationError on a malformed file before anything is asked
        read_config_file(output_path)
        with open(output_path, 'r') as f:
            existing = json.load(f)

    kind = DatabaseKind.parse(click.prompt(
        'Select your database type',
        type=click.Choice([k.value for k in DatabaseKind]),
        default=DatabaseKind.MYSQL.value
    ))

    data = dict(existing)
    data['database_type'] = kind.value
    data[kind.value] = prompt_database_section(kind, cm)

    cloud = prompt_cloud_section(cm)
    if cloud is not None:
        merged_cloud = dict(existing.get('cloud') or {})
        merged_cloud.update(cloud)
        data['cloud'] = merged_cloud

    webhook = click.prompt('Slack webhook URL (leave empty to disable)', default='', show_default=False)
    if webhook:
        data['slack_webhook_url'] = _encrypt(cm, webhook)

    parent = os.path.dirname(os.path.abspath(output_path))
    os.makedirs(parent, exist_ok=True)

    fd = os.open(output_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w') as f:
        json.dump(data, f, indent=2)

    logger.info(f"Configuration saved to {output_path}")
    return output_path
