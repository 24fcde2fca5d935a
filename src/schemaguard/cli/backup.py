"""Backup management commands for schemaguard CLI."""
from typing import List, Optional

import click

from schemaguard.errors import ConfigurationError
from schemaguard.migrations.backup import BackupManager, BackupRecord

# Local CLI imports
from .common import (
    REPORTED_ERRORS,
    echo_json,
    echo_normal,
    echo_quiet,
    fail,
    get_settings,
    get_verbosity,
)


def _manager(settings) -> BackupManager:
    return BackupManager(
        settings.db_path,
        settings.backup_dir,
        busy_timeout_ms=settings.busy_timeout_ms,
        retention_count=settings.retention_count,
    )


def _print_table(rows: List[BackupRecord], verbosity: int) -> None:
    if not rows:
        echo_normal("No backups found.", verbosity)
        return
    for row in rows:
        echo_quiet(f"{row.mtime.isoformat()}\t{row.size_bytes}\t{row.path}", verbosity)


@click.group()
def backup_group():
    """Create, list and restore database backups."""
    pass


@backup_group.command("create")
@click.option('--db', 'db_path', default=None, help='Database file')
@click.option('--backup-dir', default=None, help='Backup directory (default: {db dir}/backups)')
@click.option('--name', default=None, help='Backup name (default: manual)')
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
@click.pass_context
def create(ctx, db_path: Optional[str], backup_dir: Optional[str],
           name: Optional[str], json_output: bool) -> None:
    """Create a point-in-time backup of the database.

    The write-ahead log is checkpointed and the database is copied with
    SQLite's online backup API.

    Examples:
        schemaguard backup create
        schemaguard backup create --name before-upgrade --json
    """
    verbosity = get_verbosity(ctx)
    context = {}
    try:
        settings = get_settings(ctx, db_path=db_path, backup_dir=backup_dir, for_backup_ops=True)
        context = {'dbPath': str(settings.db_path), 'backupDir': str(settings.backup_dir)}
        backup_path = _manager(settings).create_backup(name)
    except REPORTED_ERRORS as e:
        fail('create', e, json_output, context)
        return

    if json_output:
        echo_json({'ok': True, 'cmd': 'create', **context, 'backupPath': str(backup_path)})
        return
    echo_normal(f"[backup] created {backup_path}", verbosity)


@backup_group.command("list")
@click.option('--db', 'db_path', default=None, help='Database file')
@click.option('--backup-dir', default=None, help='Backup directory (default: {db dir}/backups)')
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
@click.pass_context
def list_backups(ctx, db_path: Optional[str], backup_dir: Optional[str], json_output: bool) -> None:
    """List backups of the database, newest first.

    Examples:
        schemaguard backup list
        schemaguard backup list --json
    """
    verbosity = get_verbosity(ctx)
    context = {}
    try:
        settings = get_settings(ctx, db_path=db_path, backup_dir=backup_dir, for_backup_ops=True)
        context = {'dbPath': str(settings.db_path), 'backupDir': str(settings.backup_dir)}
        rows = _manager(settings).list_backups()
    except REPORTED_ERRORS as e:
        fail('list', e, json_output, context)
        return

    if json_output:
        echo_json({'ok': True, 'cmd': 'list', **context, 'backups': [r.to_dict() for r in rows]})
        return
    _print_table(rows, verbosity)


@backup_group.command("restore")
@click.option('--file', 'backup_file', default=None,
              help='Backup file: a path, or a file name inside the backup directory')
@click.option('--db', 'db_path', default=None, help='Database file')
@click.option('--backup-dir', default=None, help='Backup directory (default: {db dir}/backups)')
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
@click.pass_context
def restore(ctx, backup_file: Optional[str], db_path: Optional[str],
            backup_dir: Optional[str], json_output: bool) -> None:
    """Restore the database from a backup.

    WARNING: This overwrites the current database. Stop every process that
    uses it first.

    Examples:
        schemaguard backup restore --file app.db.manual.2026-10-18T09-15-02-123456Z.sqlite
    """
    verbosity = get_verbosity(ctx)
    context = {}
    try:
        if not backup_file:
            raise ConfigurationError("restore requires --file <backup.sqlite>")
        settings = get_settings(ctx, db_path=db_path, backup_dir=backup_dir, for_backup_ops=True)
        context = {'dbPath': str(settings.db_path), 'backupDir': str(settings.backup_dir)}
        manager = _manager(settings)
        backup_file_path = manager.resolve_backup_file(backup_file)
        manager.restore_backup(backup_file_path)
    except REPORTED_ERRORS as e:
        fail('restore', e, json_output, context)
        return

    if json_output:
        echo_json({'ok': True, 'cmd': 'restore', **context, 'backupFilePath': str(backup_file_path)})
        return
    echo_normal(f"[backup] restored {settings.db_path} from {backup_file_path}", verbosity)
