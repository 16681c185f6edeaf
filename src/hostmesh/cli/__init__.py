"""
hostmesh CLI: provision machines and keep their SSH hosts in sync.

Each command group lives in its own module and is attached to the
main Click group through a register function.

Entry point: hostmesh.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="hostmesh")
def main():
    """hostmesh: your machines, one SSH namespace.

    Bootstrap a box, register it in your dotfiles, reach it by name.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .bootstrap_cmd import register_bootstrap_commands
from .cron_cmd import register_cron_commands
from .hosts import register_hosts_commands
from .remote import register_remote_commands
from .sync_cmd import register_sync_commands

register_bootstrap_commands(main)
register_sync_commands(main)
register_hosts_commands(main)
register_cron_commands(main)
register_remote_commands(main)
