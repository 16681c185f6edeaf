"""Shared utilities for all CLI command modules.

Provides the Rich console instance, logging setup, and the helpers
every command uses to load configuration and report fatal errors.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape

from .. import HOSTMESH_HOME
from ..config import load_config
from ..environment import Environment, detect_environment
from ..errors import ConflictUnresolvedError, HostmeshError
from ..models import DistributionReport, HostmeshConfig

console = Console()
logger = logging.getLogger("hostmesh.cli")

home_option = click.option(
    "--home", default=HOSTMESH_HOME, type=click.Path(), help="hostmesh home (config directory).",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging.")


def setup_logging(verbose: bool) -> None:
    """Send hostmesh logs to stderr; DEBUG with --verbose, else warnings only."""
    logging.basicConfig(format="%(name)s: %(message)s")
    logging.getLogger("hostmesh").setLevel(logging.DEBUG if verbose else logging.WARNING)


def load_context(home: str) -> tuple[HostmeshConfig, Environment]:
    """Load config and detect the local machine."""
    config = load_config(Path(home).expanduser())
    return config, detect_environment()


def fail(exc: HostmeshError) -> NoReturn:
    """Print a fatal error (with instructions, if any) and exit 1."""
    console.print(f"\n  [bold red]Error:[/] {escape(str(exc))}")
    if isinstance(exc, ConflictUnresolvedError):
        console.print("  [yellow]Resolve manually:[/]")
        for step in exc.instructions:
            console.print(f"    {step}")
    console.print()
    sys.exit(1)


def yes_no(value: bool) -> str:
    return "[green]yes[/]" if value else "[dim]no[/]"


def print_distribution(report: DistributionReport) -> None:
    """Render a key distribution report, with fixes for each failure."""
    for name in report.succeeded:
        console.print(f"  [green]key installed[/]  {name}")
    for skip in report.skipped:
        console.print(f"  [yellow]skipped[/]        {skip.name} [dim]({escape(skip.reason)})[/]")
    for failure in report.failed:
        console.print(f"  [red]failed[/]         {failure.name} [dim]({escape(failure.error)})[/]")

    if report.failed:
        console.print("\n  [yellow]Copy the key manually to the failed hosts:[/]")
        for failure in report.failed:
            console.print(f"    {failure.remediation}")
