"""schemaguard CLI - Migration Commands

Apply pending migrations, report migration status, and run integrity checks.
"""
import sys
from typing import Optional

import click

from schemaguard.errors import MigrationScriptError, NotFoundError
from schemaguard.migrations.integrity import IntegrityChecker
from schemaguard.migrations.runner import MigrationRunner

# Local CLI imports
from .common import (
    REPORTED_ERRORS,
    echo_json,
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    get_settings,
    get_verbosity,
)


def _runner(settings) -> MigrationRunner:
    return MigrationRunner(
        settings.db_path,
        settings.migrations_dir,
        backup_dir=settings.backup_dir,
        legacy_db_path=settings.legacy_db_path,
        busy_timeout_ms=settings.busy_timeout_ms,
        retention_count=settings.retention_count,
    )


@click.group()
def migrate_group():
    """Migration commands."""
    pass


@migrate_group.command()
@click.option('--db', 'db_path', default=None, help='Database file')
@click.option('--migrations', 'migrations_dir', default=None,
              help='Directory of *.sql migration scripts')
@click.option('--backup-dir', default=None, help='Backup directory (default: {db dir}/backups)')
@click.option('--dry-run', is_flag=True, help='Show pending scripts without applying them')
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
@click.pass_context
def migrate(ctx, db_path: Optional[str], migrations_dir: Optional[str],
            backup_dir: Optional[str], dry_run: bool, json_output: bool) -> None:
    """Apply pending SQL migrations.

    Scripts run in file name order, each in its own transaction. An existing
    database is integrity checked and backed up first; if a script fails the
    backup is restored automatically.

    Examples:
        schemaguard migrate
        schemaguard migrate --db ./data/app.db --migrations ./migrations
        schemaguard migrate --dry-run
    """
    verbosity = get_verbosity(ctx)
    context = {}
    try:
        settings = get_settings(ctx, db_path=db_path, migrations_dir=migrations_dir,
                                backup_dir=backup_dir)
        context = {
            'dbPath': str(settings.db_path),
            'backupDir': str(settings.backup_dir),
            'migrationsDir': str(settings.migrations_dir),
        }
        result = _runner(settings).run(dry_run=dry_run)
    except REPORTED_ERRORS as e:
        if not json_output and isinstance(e, MigrationScriptError) and e.restored_from:
            click.echo(f"[migrate] failed {e.name}", err=True)
            click.echo(f"[migrate] restored db from backup {e.restored_from}", err=True)
        fail('migrate', e, json_output, context)
        return

    if json_output:
        echo_json({'ok': True, 'cmd': 'migrate', **context, **result.to_dict()})
        return

    if result.backup_path:
        echo_verbose(f"[migrate] backup {result.backup_path}", verbosity)
    if dry_run:
        for name in result.pending:
            echo_normal(f"[migrate] pending {name}", verbosity)
    for name in result.applied:
        echo_normal(f"[migrate] applied {name}", verbosity)
    echo_normal(
        f"[migrate] done (db={settings.db_path}, ran={result.applied_count}, total={result.total_count})",
        verbosity,
    )


@migrate_group.command()
@click.option('--db', 'db_path', default=None, help='Database file')
@click.option('--migrations', 'migrations_dir', default=None,
              help='Directory of *.sql migration scripts')
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
@click.pass_context
def status(ctx, db_path: Optional[str], migrations_dir: Optional[str], json_output: bool) -> None:
    """Show applied and pending migrations."""
    verbosity = get_verbosity(ctx)
    context = {}
    try:
        settings = get_settings(ctx, db_path=db_path, migrations_dir=migrations_dir)
        context = {
            'dbPath': str(settings.db_path),
            'migrationsDir': str(settings.migrations_dir),
        }
        if not settings.db_path.exists():
            raise NotFoundError("Database file", settings.db_path)
        report = _runner(settings).status()
    except REPORTED_ERRORS as e:
        fail('status', e, json_output, context)
        return

    if json_output:
        echo_json({'ok': True, 'cmd': 'status', **context, **report.to_dict()})
        return

    for entry in report.applied:
        applied_at = entry.applied_at.isoformat() if entry.applied_at else "-"
        echo_quiet(f"applied\t{applied_at}\t{entry.name}", verbosity)
    for name in report.pending:
        echo_quiet(f"pending\t-\t{name}", verbosity)
    echo_normal(
        f"{len(report.applied)} applied, {len(report.pending)} pending, {report.total_count} on disk",
        verbosity,
    )


@migrate_group.command()
@click.option('--db', 'db_path', default=None, help='Database file')
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
@click.pass_context
def check(ctx, db_path: Optional[str], json_output: bool) -> None:
    """Run SQLite's integrity check on the database."""
    verbosity = get_verbosity(ctx)
    context = {}
    try:
        settings = get_settings(ctx, db_path=db_path, for_backup_ops=True)
        context = {'dbPath': str(settings.db_path)}
        if not settings.db_path.exists():
            raise NotFoundError("Database file", settings.db_path)
        problems = IntegrityChecker(settings.busy_timeout_ms).check(settings.db_path)
    except REPORTED_ERRORS as e:
        fail('check', e, json_output, context)
        return

    if json_output:
        echo_json({'ok': not problems, 'cmd': 'check', **context, 'problems': problems},
                  err=bool(problems))
    elif problems:
        for problem in problems:
            click.echo(click.style(problem, fg="red"), err=True)
    else:
        echo_normal(click.style("ok", fg="green"), verbosity)

    if problems:
        sys.exit(1)
