"""Cron commands: install, remove, status."""

from __future__ import annotations

import sys

import click

from ..cron import installed_entry, install_cron, remove_cron
from ._common import console, home_option, load_context


def register_cron_commands(main: click.Group) -> None:
    """Register the cron command group."""

    @main.group()
    def cron():
        """Schedule periodic registry syncs."""

    @cron.command("install")
    @home_option
    @click.option("--schedule", default=None, help="Cron schedule (default from config).")
    def cron_install(home, schedule):
        """Run 'hostmesh sync --update-only' on a schedule."""
        config, _ = load_context(home)
        schedule = schedule or config.cron_schedule
        try:
            ok = install_cron(schedule)
        except ValueError as exc:
            console.print(f"\n  [red]{exc}[/]\n")
            sys.exit(1)
        if not ok:
            console.print("\n  [red]Could not install cron entry.[/] Is crontab available?\n")
            sys.exit(1)
        console.print(f"\n  [green]Periodic sync scheduled:[/] {schedule}\n")

    @cron.command("remove")
    def cron_remove():
        """Remove the periodic sync entry."""
        if remove_cron():
            console.print("\n  [green]Periodic sync removed.[/]\n")
        else:
            console.print("\n  [dim]No periodic sync was scheduled.[/]\n")

    @cron.command("status")
    def cron_status():
        """Show the installed schedule, if any."""
        entry = installed_entry()
        if entry:
            console.print(f"\n  [green]Scheduled:[/] {entry}\n")
        else:
            console.print("\n  [dim]No periodic sync scheduled.[/]\n")
