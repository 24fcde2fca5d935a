"""schemaguard CLI - SQLite migration and backup command line interface

Command groups are organized into separate modules:
- backup.py: backup create, list, restore
- migrate.py: migrate, status, check
- common.py: shared utilities
"""
import logging
import sys
from pathlib import Path

import click

from schemaguard import __version__

# Local imports
from .backup import backup_group
from .migrate import migrate_group


@click.group()
@click.version_option(version=__version__, prog_name="schemaguard")
@click.option('--config', 'config_path', type=click.Path(), default=None,
              envvar='SCHEMAGUARD_CONFIG',
              help='Config file (default: {data dir}/config.yaml)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output and debug logging')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, config_path, verbose, quiet):
    """schemaguard - safe SQLite schema migrations

    Applies plain SQL migration scripts with an automatic backup before
    every change and a restore when a script fails.

    \b
    Key Commands:
        migrate           Apply pending migrations
        status            Show applied and pending migrations
        check             Run the SQLite integrity check
        backup create     Create a backup
        backup list       List backups
        backup restore    Restore a backup

    \b
    Examples:
        schemaguard migrate --db ./data/app.db --migrations ./migrations
        schemaguard backup create --name before-upgrade
        schemaguard backup restore --file app.db.before-upgrade.2026-10-18T09-15-02-123456Z.sqlite
    """
    from .common import VERBOSITY_QUIET, VERBOSITY_NORMAL, VERBOSITY_VERBOSE

    ctx.ensure_object(dict)

    # Validate mutually exclusive flags
    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['config_path'] = Path(config_path) if config_path else None


# Register migration commands (migrate, status, check)
cli.add_command(migrate_group.commands['migrate'])
cli.add_command(migrate_group.commands['status'])
cli.add_command(migrate_group.commands['check'])

# Register backup command group (backup create, list, restore)
cli.add_command(backup_group, name='backup')


def main():
    """Entry point for the CLI."""
    cli()


__all__ = [
    'cli',
    'main',
]
