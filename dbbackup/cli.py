"""
Command-line interface for dbbackup.

Commands:
- backup:    dump a database, compress it, optionally upload it
- restore:   optionally download, decompress, and restore a database
- schedule:  run backups on cron expressions until terminated
- list:      show local artifacts or objects in a cloud bucket
- configure: interactive wizard writing the JSON config file

Exit code 0 on success, 1 on any validation or execution failure.
"""

import os
import sys
import signal
import logging
from datetime import datetime
from typing import Optional

import click

from dbbackup import __version__, configure_logging
from dbbackup.config import ConfigurationError, DEFAULT_CONFIG_FILE, load_config
from dbbackup.models import BackupRequest, CloudTarget, DatabaseKind, RestoreRequest, ScheduleRequest
from dbbackup.backup.executor import execute_backup
from dbbackup.backup.restore import execute_restore
from dbbackup.backup.storage import StorageError, create_storage, resolve_cloud_target
from dbbackup import scheduler as scheduler_module


logger = logging.getLogger(__name__)

DB_HELP = 'Database type (mysql, postgres, mongodb, sqlite)'


def _fail(ctx: click.Context, error: Exception):
    logger.error(f"{type(error).__name__}: {error}")
    ctx.exit(1)


def _load_config(ctx: click.Context):
    """Load the configuration snapshot and set up logging."""
    opts = ctx.obj
    try:
        config = load_config(config_file=opts['config_file'], env_file=opts['env_file'])
    except ConfigurationError as e:
        configure_logging(os.environ.get('DBBACKUP_LOG_DIR', 'logs'), verbose=opts['verbose'])
        _fail(ctx, e)

    configure_logging(config.log_dir, verbose=opts['verbose'])
    return config


def _parse_kind(ctx: click.Context, db_type: Optional[str]) -> DatabaseKind:
    if not db_type:
        _fail(ctx, ConfigurationError("Missing required option --db"))
    try:
        return DatabaseKind.parse(db_type)
    except ConfigurationError as e:
        _fail(ctx, e)


def _cloud_target(enabled: bool, provider: Optional[str], bucket: Optional[str]) -> Optional[CloudTarget]:
    if not (enabled or provider or bucket):
        return None
    return CloudTarget(provider=provider or None, bucket_name=bucket or None)


def _finish(ctx: click.Context, result):
    if result.succeeded:
        click.echo(f"{result.operation.capitalize()} completed successfully")
        return
    click.echo(f"{result.operation.capitalize()} failed: {result.error_message}", err=True)
    ctx.exit(1)


@click.group()
@click.version_option(__version__, prog_name='dbbackup')
@click.option('--config', 'config_file', default=None, type=click.Path(dir_okay=False),
              help=f'JSON config file (default: $DBBACKUP_CONFIG or ./{DEFAULT_CONFIG_FILE})')
@click.option('--env-file', default=None, type=click.Path(dir_okay=False),
              help='dotenv file to load (default: ./.env)')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config_file, env_file, verbose):
    """Back up, restore, and schedule database backups."""
    ctx.obj = {
        'config_file': config_file,
        'env_file': env_file,
        'verbose': verbose,
    }


@cli.command()
@click.option('-d', '--db', 'db_type', help=DB_HELP)
@click.option('--cloud-provider', help='Cloud provider (s3, google, azure)')
@click.option('--cloud-bucket', help='Bucket/container name (overrides config)')
@click.option('--dry-run', is_flag=True, help='Log intended actions without executing them')
@click.pass_context
def backup(ctx, db_type, cloud_provider, cloud_bucket, dry_run):
    """Back up a database."""
    config = _load_config(ctx)
    request = BackupRequest(
        database_kind=_parse_kind(ctx, db_type),
        cloud_target=_cloud_target(False, cloud_provider, cloud_bucket),
        dry_run=dry_run
    )
    _finish(ctx, execute_backup(request, config))


@cli.command()
@click.option('-d', '--db', 'db_type', help=DB_HELP)
@click.option('--cloud', 'use_cloud', is_flag=True, help='Download the backup from cloud storage first')
@click.option('--provider', help='Cloud provider (s3, google, azure)')
@click.option('--bucket', help='Bucket/container name (overrides config)')
@click.option('-f', '--file', 'source_path', type=click.Path(dir_okay=False),
              help='Backup file to restore from (default: configured backup path)')
@click.option('--dry-run', is_flag=True, help='Log intended actions without executing them')
@click.pass_context
def restore(ctx, db_type, use_cloud, provider, bucket, source_path, dry_run):
    """Restore a database from a backup."""
    config = _load_config(ctx)
    request = RestoreRequest(
        database_kind=_parse_kind(ctx, db_type),
        cloud_target=_cloud_target(use_cloud, provider, bucket),
        dry_run=dry_run,
        source_path=source_path
    )
    _finish(ctx, execute_restore(request, config))


@cli.command()
@click.option('-t', '--time', 'cron_expressions', multiple=True,
              help='Cron expression (5 fields, or 6 with seconds first); repeatable')
@click.option('-d', '--db', 'db_type', help=DB_HELP)
@click.option('--cloud-provider', help='Cloud provider (s3, google, azure)')
@click.option('--cloud-bucket', help='Bucket/container name (overrides config)')
@click.pass_context
def schedule(ctx, cron_expressions, db_type, cloud_provider, cloud_bucket):
    """Run backups on a cron schedule until interrupted."""
    config = _load_config(ctx)
    if not cron_expressions:
        _fail(ctx, ConfigurationError("Missing required option --time"))

    backup_request = BackupRequest(
        database_kind=_parse_kind(ctx, db_type),
        cloud_target=_cloud_target(False, cloud_provider, cloud_bucket)
    )

    try:
        for expression in cron_expressions:
            scheduler_module.schedule_backup(ScheduleRequest(expression, backup_request), config)
    except ConfigurationError as e:
        _fail(ctx, e)

    for job in scheduler_module.get_scheduled_jobs():
        click.echo(f"Scheduled {job['id']}: {job['trigger']}")

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down scheduler")
        scheduler_module.stop_scheduler()

    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        scheduler_module.start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        scheduler_module.stop_scheduler()


@cli.command('list')
@click.option('--cloud', 'use_cloud', is_flag=True, help='List objects in cloud storage')
@click.option('--provider', help='Cloud provider (s3, google, azure)')
@click.option('--bucket', help='Bucket/container name (overrides config)')
@click.option('--prefix', default='', help='Only list keys starting with this prefix')
@click.pass_context
def list_backups(ctx, use_cloud, provider, bucket, prefix):
    """List local backup artifacts or cloud objects."""
    config = _load_config(ctx)

    if not (use_cloud or provider or bucket):
        found = False
        for kind, path in config.backup_paths().items():
            for candidate in (path, f"{path}.gz"):
                if candidate and os.path.isfile(candidate):
                    stat = os.stat(candidate)
                    modified = datetime.fromtimestamp(stat.st_mtime).isoformat(timespec='seconds')
                    click.echo(f"{kind:<9} {candidate}  {stat.st_size} bytes  {modified}")
                    found = True
        if not found:
            click.echo("No local backups found")
        return

    try:
        resolved_provider, bucket_name = resolve_cloud_target(CloudTarget(provider, bucket), config.cloud)
        storage = create_storage(resolved_provider, config.cloud)
        objects = storage.list_objects(bucket_name, prefix=prefix)
    except (ConfigurationError, StorageError) as e:
        _fail(ctx, e)

    if not objects:
        click.echo(f"No backups found in {resolved_provider.value} bucket {bucket_name}")
        return

    for obj in objects:
        modified = obj['last_modified'].isoformat() if obj.get('last_modified') else '-'
        click.echo(f"{obj['key']}  {obj['size']} bytes  {modified}")


@cli.command()
@click.option('-o', '--output', default=None, type=click.Path(dir_okay=False),
              help=f'Config file to write (default: --config or ./{DEFAULT_CONFIG_FILE})')
@click.pass_context
def configure(ctx, output):
    """Interactively create or update the config file."""
    from dbbackup.wizard import run_wizard

    configure_logging(os.environ.get('DBBACKUP_LOG_DIR', 'logs'), verbose=ctx.obj['verbose'])
    output = output or ctx.obj['config_file'] or os.environ.get('DBBACKUP_CONFIG', DEFAULT_CONFIG_FILE)

    try:
        path = run_wizard(output)
    except ConfigurationError as e:
        _fail(ctx, e)

    click.echo(f"Configuration saved to {path}")


def main():
    """Console script entry point."""
    try:
        cli(standalone_mode=True)
    except Exception as e:
        logger.exception(f"Unhandled error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
