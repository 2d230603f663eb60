"""
cred CLI -- local-first credential manager.

This package organizes the CLI into modular command groups.
Each group lives in its own module; the main Click group is defined
here and every subcommand is registered via a register function.

Errors raised anywhere below are CredError subclasses. They are caught
once, here, printed (plain or as the JSON error envelope), and turned
into the process exit code they carry.

Entry point: cred.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__
from ..errors import CredError
from ._common import FLAG_NAMES, global_flags, report_error


class CredGroup(click.Group):
    """Top-level group that maps CredError to its exit code."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except CredError as exc:
            report_error(exc, bool(ctx.ensure_object(dict).get("json")))
            ctx.exit(int(exc.exit_code))


@click.group(cls=CredGroup)
@click.version_option(version=__version__, prog_name="cred")
@global_flags
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx, verbose):
    """cred -- local-first credential manager.

    Secrets live in an encrypted vault inside your project. Push them to
    deployment targets; prune them away. Targets are never read back.
    """
    obj = ctx.ensure_object(dict)
    for name in FLAG_NAMES:
        obj.setdefault(name, False)

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .init_cmd import register_init_commands
from .status import register_status_commands
from .secret import register_secret_commands
from .envfile_cmd import register_envfile_commands
from .target import register_target_commands
from .sync_cmd import register_sync_commands
from .config_cmd import register_config_commands

register_init_commands(main)
register_status_commands(main)
register_secret_commands(main)
register_envfile_commands(main)
register_target_commands(main)
register_sync_commands(main)
register_config_commands(main)
