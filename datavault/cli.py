"""
DataVault command line interface.

    datavault backup      run one backup cycle and exit
    datavault start       run backups now and then on an interval until interrupted
    datavault serve       like start, plus an HTTP status/trigger API
    datavault init-config write a default configuration file
"""

import logging
import os
import signal
import sys

import click

from datavault import configure_logging, create_app
from datavault.backup.cancellation import CancellationToken
from datavault.backup.models import OutcomeStatus
from datavault.config import (
    DEFAULT_CONFIG_FILE_VALUES,
    ConfigError,
    config,
    load_config_file,
    merge_config,
    save_config_file,
    validate_settings,
)
from datavault.service import build_service


logger = logging.getLogger('datavault')

EXAMPLE = "  datavault start --source ~/Documents --gdrive-auth ./auth.json --pcloud-auth token123"


def _app_config():
    return config[os.environ.get('DATAVAULT_ENV', 'production')]


def backup_options(func):
    """Options shared by every command that runs backups."""
    options = [
        click.option('--source', 'source_folder', help='Source folder to backup (required).'),
        click.option('--interval', 'backup_interval', help='Backup interval, e.g. 30m, 1h, 2h30m  [default: 1h]'),
        click.option('--config', 'config_file', default='datavault.json', show_default=True,
                     help='Configuration file path.'),
        click.option('--gdrive-auth', 'gdrive_auth', help='Google Drive credentials JSON file path.'),
        click.option('--pcloud-auth', 'pcloud_auth', help='pCloud authentication token.'),
        click.option('--s3-bucket', 's3_bucket', help='S3 bucket name (credentials from config file or AWS environment).'),
        click.option('--dry-run', is_flag=True, default=False,
                     help='Show what would be backed up without actually doing it.'),
        click.option('--verbose', is_flag=True, default=False, help='Enable verbose logging.'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def resolve_settings(ctx, config_file, **flags):
    """Load the config file, merge flags over it, and validate; exits with usage on error."""
    try:
        file_values = load_config_file(config_file)
    except ConfigError as e:
        click.echo(f"Warning: Failed to load config file: {e}", err=True)
        file_values = {}

    try:
        return validate_settings(merge_config(file_values, flags))
    except ConfigError as e:
        click.echo(f"Configuration error: {e}\n", err=True)
        click.echo(ctx.get_help(), err=True)
        click.echo(f"\nExample:\n{EXAMPLE}", err=True)
        ctx.exit(1)


def install_signal_handlers(cancel_token: CancellationToken):
    """Cancel the token on SIGINT/SIGTERM."""
    def handle_signal(signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}, shutting down gracefully...")
        cancel_token.cancel()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


def _log_startup(settings):
    logger.info("DataVault starting...")
    logger.info(f"Source folder: {settings.source_folder}")
    logger.info(f"Backup interval: {settings.backup_interval}s")
    logger.info(f"Dry run: {settings.dry_run}")


@click.group(help='DataVault - CLI tool for seamless data backup to multiple cloud drives.')
@click.version_option(package_name='datavault')
def cli():
    pass


@cli.command('backup')
@backup_options
@click.pass_context
def backup_command(ctx, config_file, **flags):
    """Run a single backup cycle and exit."""
    settings = resolve_settings(ctx, config_file, **flags)
    app_config = _app_config()
    configure_logging(settings.verbose, app_config.LOG_DIR, app_config.LOG_FILE_MAX_BYTES, app_config.LOG_FILE_BACKUP_COUNT)

    cancel_token = CancellationToken()
    install_signal_handlers(cancel_token)

    service = build_service(settings, app_config, cancel_token=cancel_token)
    report = service.orchestrator.run_backup(cancel_token)

    for outcome in report.outcomes:
        marker = {
            OutcomeStatus.SUCCESS: 'ok',
            OutcomeStatus.FAILED: 'FAILED',
            OutcomeStatus.CANCELLED: 'cancelled',
            OutcomeStatus.NOT_CONFIGURED: 'skipped',
        }[outcome.status]
        line = f"  [{marker}] {outcome.message}"
        if outcome.error and outcome.status == OutcomeStatus.FAILED:
            line += f": {outcome.error}"
        click.echo(line)

    click.echo(report.message)
    ctx.exit(0 if report.success else 1)


@cli.command('start')
@backup_options
@click.pass_context
def start_command(ctx, config_file, **flags):
    """Back up now, then repeat on the configured interval until interrupted."""
    settings = resolve_settings(ctx, config_file, **flags)
    app_config = _app_config()
    configure_logging(settings.verbose, app_config.LOG_DIR, app_config.LOG_FILE_MAX_BYTES, app_config.LOG_FILE_BACKUP_COUNT)
    _log_startup(settings)

    cancel_token = CancellationToken()
    install_signal_handlers(cancel_token)

    service = build_service(settings, app_config, cancel_token=cancel_token)
    service.scheduler.run_forever()

    logger.info("DataVault shutdown complete")


@cli.command('serve')
@backup_options
@click.option('--host', default='127.0.0.1', show_default=True, help='Address for the status API.')
@click.option('--port', default=5000, show_default=True, type=int, help='Port for the status API.')
@click.pass_context
def serve_command(ctx, config_file, host, port, **flags):
    """Run scheduled backups with an HTTP status and trigger API."""
    settings = resolve_settings(ctx, config_file, **flags)
    _log_startup(settings)

    cancel_token = CancellationToken()
    app = create_app(
        os.environ.get('DATAVAULT_ENV', 'production'),
        settings=settings,
        cancel_token=cancel_token,
        start_scheduler=True
    )

    try:
        app.run(host=host, port=port, use_reloader=False)
    finally:
        cancel_token.cancel()
        app.extensions['datavault'].scheduler.stop(wait=True)
        logger.info("DataVault shutdown complete")


@cli.command('init-config')
@click.option('--config', 'config_file', default='datavault.json', show_default=True,
              help='Configuration file path.')
@click.option('--force', is_flag=True, default=False, help='Overwrite an existing file.')
def init_config_command(config_file, force):
    """Write a default configuration file."""
    if os.path.exists(config_file) and not force:
        raise click.ClickException(f"{config_file} already exists (use --force to overwrite)")

    try:
        save_config_file(dict(DEFAULT_CONFIG_FILE_VALUES), config_file)
    except ConfigError as e:
        raise click.ClickException(str(e))

    click.echo(f"Created default configuration file at: {config_file}")


def main():
    cli(prog_name='datavault')


if __name__ == '__main__':
    sys.exit(main())
