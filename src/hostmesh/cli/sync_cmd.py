"""Sync command: register this host, rebuild the registry, publish it."""

from __future__ import annotations

import sys

import click
from rich.markup import escape
from rich.table import Table

from ..cron import install_cron, remove_cron
from ..errors import HostmeshError
from ..sync import SyncOptions, SyncProtocol, SyncState
from ._common import (
    console,
    fail,
    home_option,
    load_context,
    print_distribution,
    setup_logging,
    verbose_option,
    yes_no,
)


def _print_state(state: SyncState) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Step", style="cyan")
    table.add_column("Result")

    if state.pull_skipped:
        pulled = "[dim]skipped[/]"
    else:
        pulled = yes_no(state.pull_ok)
    if state.shelved:
        pulled += " [dim](local changes shelved and reapplied)[/]"
    table.add_row("Pulled", pulled)
    table.add_row(
        "Registered",
        f"{state.canonical_name}" if state.registered else "[dim]no (update-only)[/]",
    )
    table.add_row("Hosts", str(state.host_count))
    table.add_row("Registry changed", yes_no(state.registry_changed))
    table.add_row("SSH config changed", yes_no(state.include_changed))
    table.add_row("Committed", yes_no(state.committed))
    table.add_row("Pushed", yes_no(state.pushed))

    console.print()
    console.print(table)
    for condition in state.conditions:
        console.print(f"  [yellow]warning:[/] {escape(condition.value.replace('_', ' '))}")
    console.print()


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command."""

    @main.command("sync")
    @home_option
    @verbose_option
    @click.option("--update-only", is_flag=True, help="Pull and rebuild without registering this host.")
    @click.option("-f", "--force", is_flag=True, help="Rewrite the SSH config include even if present.")
    @click.option("--skip-pull", is_flag=True, help="Do not pull from the remote first.")
    @click.option("--distribute-keys", is_flag=True, help="Copy this host's public key to every other host.")
    @click.option("--install-cron", "schedule_cron", is_flag=True, help="Schedule periodic update-only syncs.")
    @click.option("--remove-cron", "unschedule_cron", is_flag=True, help="Remove the periodic sync schedule.")
    def sync(home, verbose, update_only, force, skip_pull, distribute_keys, schedule_cron, unschedule_cron):
        """Register this host and sync the shared SSH hosts registry.

        Adds this machine to your dotfiles, rebuilds the combined hosts
        file, includes it in ~/.ssh/config, and pushes the result.
        """
        if schedule_cron and unschedule_cron:
            raise click.UsageError("--install-cron and --remove-cron are mutually exclusive")

        setup_logging(verbose)
        config, env = load_context(home)
        options = SyncOptions(
            update_only=update_only,
            skip_pull=skip_pull,
            force=force,
            distribute_keys=distribute_keys,
        )

        console.print("\n  [bold]SSH Hosts Manager[/]")
        try:
            state = SyncProtocol(config, env).run(options)
        except HostmeshError as exc:
            fail(exc)

        _print_state(state)

        if schedule_cron:
            try:
                installed = install_cron(config.cron_schedule)
            except ValueError as exc:
                console.print(f"  [red]{escape(str(exc))}[/]\n")
                sys.exit(1)
            if installed:
                console.print(f"  [green]Periodic sync scheduled[/] [dim]({config.cron_schedule})[/]\n")
            else:
                console.print("  [yellow]Could not install cron entry.[/]\n")
        if unschedule_cron:
            if remove_cron():
                console.print("  [green]Periodic sync removed[/]\n")
            else:
                console.print("  [dim]No periodic sync was scheduled.[/]\n")

        if state.distribution is not None:
            print_distribution(state.distribution)
            console.print()
            if not state.distribution.ok:
                sys.exit(1)

        if state.canonical_name and state.registered:
            console.print(f"  You can now SSH to any registered host by name, e.g. [cyan]ssh {state.canonical_name}[/]\n")
