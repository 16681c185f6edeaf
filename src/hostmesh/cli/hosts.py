"""Registry commands: hosts list, hosts show, distribute."""

from __future__ import annotations

import json
import sys

import click
from rich.panel import Panel
from rich.table import Table

from ..distribute import distribute, load_public_key, public_key_path
from ..errors import HostmeshError, InvalidNameError
from ..records import sanitize_name
from ..registry import load_registry
from ._common import (
    console,
    fail,
    home_option,
    load_context,
    print_distribution,
    setup_logging,
    verbose_option,
)


def register_hosts_commands(main: click.Group) -> None:
    """Register the hosts group and the distribute command."""

    @main.group()
    def hosts():
        """Inspect the shared SSH hosts registry."""

    @hosts.command("list")
    @home_option
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def hosts_list(home, json_out):
        """List every registered host."""
        config, _ = load_context(home)
        registry = load_registry(config.hosts_dir)

        if json_out:
            click.echo(json.dumps(
                [r.model_dump(mode="json") for r in registry.ordered()], indent=2,
            ))
            return

        console.print()
        if not len(registry):
            console.print("  [dim]No hosts registered.[/]")
            console.print("  Register this one: hostmesh sync\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2),
                      title=f"Registered Hosts ({len(registry)})")
        table.add_column("Name", style="cyan")
        table.add_column("Address")
        table.add_column("Aliases", style="dim")
        table.add_column("User")
        table.add_column("Added", style="dim")

        for r in registry.ordered():
            added = r.created_at.strftime("%Y-%m-%d") if r.created_at else ""
            table.add_row(
                r.canonical_name,
                r.primary_address or "[dim]-[/]",
                ", ".join(r.alias_names()),
                r.login_user,
                added,
            )

        console.print(table)
        if registry.skipped:
            console.print(f"\n  [yellow]Skipped unreadable records:[/] {', '.join(registry.skipped)}")
        console.print()

    @hosts.command("show")
    @click.argument("name")
    @home_option
    def hosts_show(name, home):
        """Show one registered host."""
        config, _ = load_context(home)
        registry = load_registry(config.hosts_dir)
        try:
            key = sanitize_name(name, fallback="")
        except InvalidNameError:
            key = ""
        record = registry.get(key)
        if record is None:
            console.print(f"\n  [yellow]Host '{name}' not registered.[/]\n")
            sys.exit(1)

        lines = [
            f"[bold]Reported name:[/] {record.reported_name}",
            f"[bold]Address:[/] {record.primary_address or '-'}",
            f"[bold]User:[/] {record.login_user}",
            f"[bold]Identity:[/] {record.identity_file}",
            f"[bold]Added:[/] {record.created_at.isoformat() if record.created_at else 'unknown'}",
            f"[bold]Record file:[/] {record.source}",
        ]
        for alias, addr in zip(record.alias_names(), record.alternate_addresses):
            lines.append(f"[bold]{alias}:[/] {addr}")
        console.print()
        console.print(Panel("\n".join(lines), title=f"[cyan]{record.canonical_name}[/]", border_style="cyan"))
        console.print()

    @main.command("distribute")
    @home_option
    @verbose_option
    def distribute_cmd(home, verbose):
        """Copy this host's public key to every other registered host."""
        setup_logging(verbose)
        config, env = load_context(home)
        try:
            public_key = load_public_key(config.identity_file)
        except HostmeshError as exc:
            fail(exc)

        registry = load_registry(config.hosts_dir)
        try:
            local_name = sanitize_name(env.hostname, config.fallback_name)
        except InvalidNameError:
            local_name = None

        console.print(f"\n  Distributing key to {max(len(registry) - 1, 0)} host(s)...\n")
        report = distribute(
            registry,
            public_key,
            local_name=local_name,
            bridge_networks=config.bridge_networks,
            key_path=public_key_path(config.identity_file),
        )
        print_distribution(report)
        console.print()
        if not report.ok:
            sys.exit(1)
