"""Bootstrap command: provision a fresh machine."""

from __future__ import annotations

from pathlib import Path

import click
from rich.panel import Panel

from ..bootstrap import run_bootstrap
from ..errors import HostmeshError
from ._common import console, fail, home_option, load_context, setup_logging, verbose_option


def register_bootstrap_commands(main: click.Group) -> None:
    """Register the bootstrap command."""

    @main.command("bootstrap")
    @home_option
    @verbose_option
    @click.option("-f", "--force", is_flag=True, help="Force reinstall/update of packages.")
    @click.option(
        "-d", "--domain", is_flag=False, flag_value="", default=None,
        help="Configure DNS search domain (default from config: lab).",
    )
    def bootstrap(home, verbose, force, domain):
        """Install essentials, SSH keys, dotfiles, and the SSH server.

        Run once on every new machine, then 'hostmesh sync' to join
        the shared hosts registry.
        """
        setup_logging(verbose)
        config, env = load_context(home)
        if domain == "":
            domain = config.search_domain

        console.print(f"\n  [bold]Bootstrapping[/] [cyan]{env.hostname}[/] [dim]({env.distro})[/]\n")
        try:
            results = run_bootstrap(config, env, force=force, search_domain=domain)
        except HostmeshError as exc:
            fail(exc)

        for step, ok in results.items():
            mark = "[green]ok[/]" if ok else "[yellow]needs attention[/]"
            console.print(f"  {step:<10} {mark}")

        github_pub = Path(f"{config.github_key.expanduser()}.pub")
        steps = ["Reopen your shell so the new Neovim is on your PATH",
                 "Run 'hostmesh sync' to register this host"]
        if github_pub.exists():
            steps.insert(0, f"Add {github_pub} to your GitHub account:\n    "
                            f"{github_pub.read_text(encoding='utf-8').strip()}")
        console.print()
        console.print(Panel(
            "\n".join(f"- {s}" for s in steps),
            title="[green]Bootstrap complete[/]", border_style="green",
        ))
        console.print()
