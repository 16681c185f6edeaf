"""
Periodic registry sync through the user's crontab.

Installs one tagged crontab line that runs ``hostmesh sync
--update-only`` on a schedule, so a machine picks up hosts registered
elsewhere without anyone logging in. The line is identified by a
marker comment, which makes install and remove idempotent.

Usage:
    from hostmesh.cron import install_cron, remove_cron
    install_cron("0 * * * *")
    remove_cron()
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from typing import Optional

logger = logging.getLogger("hostmesh.cron")

CRON_MARKER = "# hostmesh-sync"
DEFAULT_SCHEDULE = "0 * * * *"


def _run(cmd: list[str], input_text: Optional[str] = None) -> subprocess.CompletedProcess:
    """Run a command and capture output."""
    return subprocess.run(
        cmd, input=input_text, capture_output=True, text=True, timeout=30, check=False,
    )


def cron_available() -> bool:
    return shutil.which("crontab") is not None


def default_command() -> str:
    """Command line cron should run."""
    exe = shutil.which("hostmesh")
    if exe:
        return f"{exe} sync --update-only"
    return f"{sys.executable} -m hostmesh sync --update-only"


def read_crontab() -> Optional[list[str]]:
    """Current crontab lines.

    Returns:
        The lines, an empty list if the user has no crontab, or None if
        the crontab could not be read.
    """
    try:
        result = _run(["crontab", "-l"])
    except subprocess.TimeoutExpired:
        logger.error("crontab -l timed out")
        return None
    if result.returncode == 0:
        return result.stdout.splitlines()
    if "no crontab for" in result.stderr:
        return []
    logger.error("Could not read crontab: %s", result.stderr.strip())
    return None


def _write_crontab(lines: list[str]) -> bool:
    text = "\n".join(lines) + "\n" if lines else ""
    try:
        result = _run(["crontab", "-"], input_text=text)
    except subprocess.TimeoutExpired:
        logger.error("crontab update timed out")
        return False
    if result.returncode != 0:
        logger.error("crontab update failed: %s", result.stderr.strip())
        return False
    return True


def cron_line(schedule: str, command: str) -> str:
    return f"{schedule} {command} >/dev/null 2>&1 {CRON_MARKER}"


def installed_entry() -> Optional[str]:
    """The hostmesh crontab line, if one is installed."""
    for line in read_crontab() or []:
        if line.rstrip().endswith(CRON_MARKER):
            return line
    return None


def install_cron(schedule: str = DEFAULT_SCHEDULE, command: Optional[str] = None) -> bool:
    """Install or replace the periodic sync entry.

    Args:
        schedule: Five-field cron schedule.
        command: Command to run. Defaults to ``hostmesh sync --update-only``.

    Returns:
        bool: True if the crontab now holds the entry.
    """
    if not cron_available():
        logger.warning("crontab not found; cannot schedule periodic sync")
        return False
    if len(schedule.split()) != 5:
        raise ValueError(f"Invalid cron schedule: {schedule!r}")

    line = cron_line(schedule, command or default_command())
    current = read_crontab()
    if current is None:
        return False
    kept = [l for l in current if not l.rstrip().endswith(CRON_MARKER)]
    if line in current and len(kept) == len(current) - 1:
        logger.info("Cron entry already installed")
        return True

    if not _write_crontab(kept + [line]):
        return False
    logger.info("Installed cron entry: %s", schedule)
    return True


def remove_cron() -> bool:
    """Remove the periodic sync entry.

    Returns:
        bool: True if an entry was removed.
    """
    if not cron_available():
        return False

    current = read_crontab()
    if current is None:
        return False
    kept = [l for l in current if not l.rstrip().endswith(CRON_MARKER)]
    if len(kept) == len(current):
        logger.info("No hostmesh cron entry to remove")
        return False
    if not _write_crontab(kept):
        return False
    logger.info("Removed hostmesh cron entry")
    return True
