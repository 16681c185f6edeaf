"""Remote commands: switch the dotfiles remote to SSH."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from ..errors import GitError
from ..git import GitRepo, is_ssh_url, to_ssh_url
from ._common import console, home_option, load_context


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=30)


def register_remote_commands(main: click.Group) -> None:
    """Register the remote command group."""

    @main.group()
    def remote():
        """Manage the dotfiles git remote."""

    @remote.command("use-ssh")
    @home_option
    @click.option("--yes", is_flag=True, help="Skip the GitHub key confirmation.")
    def remote_use_ssh(home, yes):
        """Point the dotfiles 'origin' at its SSH URL so pushes use your key."""
        config, _ = load_context(home)
        repo = GitRepo(config.dotfiles_path)
        if not repo.is_repo():
            console.print(f"\n  [red]Dotfiles directory not found at {config.dotfiles_path}[/]")
            console.print("  Run 'hostmesh bootstrap' first.\n")
            sys.exit(1)

        github_pub = Path(f"{config.github_key.expanduser()}.pub")
        if not github_pub.exists():
            console.print(f"\n  [red]GitHub SSH key not found at {github_pub}[/]")
            console.print("  Run 'hostmesh bootstrap' first to generate it.\n")
            sys.exit(1)

        current = repo.remote_url("origin")
        if current is None:
            console.print("\n  [red]No 'origin' remote configured.[/]\n")
            sys.exit(1)
        console.print(f"\n  Current remote: {current}")
        if is_ssh_url(current):
            console.print("  [green]Remote is already using SSH.[/] No changes needed.\n")
            return

        if not yes:
            console.print("  Your GitHub SSH public key is:")
            console.print(f"  [cyan]{github_pub.read_text(encoding='utf-8').strip()}[/]\n")
            if not click.confirm("  Have you added this key to your GitHub account?"):
                console.print("  Add it at https://github.com/settings/keys, then run this again.\n")
                sys.exit(1)

        try:
            new_url = to_ssh_url(current)
            repo.set_remote_url(new_url)
        except (ValueError, GitError) as exc:
            console.print(f"  [red]{exc}[/]\n")
            sys.exit(1)
        console.print(f"  New remote: {new_url}")

        host = new_url.split("@", 1)[1].split(":", 1)[0]
        try:
            result = _run(["ssh", "-T", "-i", str(config.github_key.expanduser()), f"git@{host}"])
        except (OSError, subprocess.TimeoutExpired) as exc:
            console.print(f"  [yellow]Could not test the SSH connection: {exc}[/]")
            return
        # GitHub answers a successful -T with exit 1 and a greeting
        greeting = (result.stderr or result.stdout).strip()
        if greeting:
            console.print(f"  [dim]{greeting}[/]")
        console.print("  [green]Remote update complete.[/]\n")
