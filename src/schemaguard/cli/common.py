"""Shared utilities for schemaguard CLI commands."""
import json
import sqlite3
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click

from schemaguard.config import Settings, load_settings
from schemaguard.errors import SchemaGuardError

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

# Failures reported to the user instead of a traceback
REPORTED_ERRORS = (SchemaGuardError, sqlite3.Error, OSError)


def should_print(verbosity: int, message_level: int) -> bool:
    """Determine if a message should be printed based on verbosity settings.

    Args:
        verbosity: Current verbosity level (0=quiet, 1=normal, 2=verbose).
        message_level: Minimum verbosity level required for this message.
    """
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message, err=False)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=False)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a message that is shown even in quiet mode."""
    click.echo(message, err=False)


def echo_json(payload: Dict[str, Any], err: bool = False) -> None:
    """Print one JSON object."""
    click.echo(json.dumps(payload, indent=2, default=str), err=err)


def get_verbosity(ctx: click.Context) -> int:
    return (ctx.obj or {}).get('verbosity', VERBOSITY_NORMAL)


def get_settings(ctx: click.Context,
                 db_path: Optional[str] = None,
                 migrations_dir: Optional[str] = None,
                 backup_dir: Optional[str] = None,
                 for_backup_ops: bool = False) -> Settings:
    """Resolve settings for a command from its flags and the global --config."""
    config_path: Optional[Path] = (ctx.obj or {}).get('config_path')
    return load_settings(
        db_path=db_path,
        migrations_dir=migrations_dir,
        backup_dir=backup_dir,
        config_path=config_path,
        for_backup_ops=for_backup_ops,
    )


def fail(cmd: str, error: Exception, json_output: bool,
         context: Optional[Dict[str, Any]] = None) -> None:
    """Report a failure on stderr and exit with status 1."""
    if json_output:
        payload: Dict[str, Any] = {'ok': False, 'cmd': cmd}
        payload.update(context or {})
        if isinstance(error, SchemaGuardError):
            payload.update(error.to_dict())
        else:
            payload.update({'kind': type(error).__name__, 'error': str(error)})
        echo_json(payload, err=True)
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
    sys.exit(1)
