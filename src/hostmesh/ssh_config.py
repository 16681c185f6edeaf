"""
Point the local SSH client at the shared hosts document.

``~/.ssh/config`` gets exactly one ``Include`` directive for the
rendered registry, at the top so it applies before any ``Host`` block.
Directives are matched token by token, not by substring, so
``Include /x/hosts.bak`` is never mistaken for ``Include /x/hosts``.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from .records import write_atomic

logger = logging.getLogger("hostmesh.ssh_config")

MARKER = "# Include generated hosts file from dotfiles"

_INCLUDE = re.compile(r"^include(?:\s*=\s*|\s+)(.*)$", re.IGNORECASE)


def include_args(line: str) -> Optional[list[str]]:
    """Return the path arguments if ``line`` is an Include directive."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    match = _INCLUDE.match(stripped)
    if not match:
        return None
    try:
        return shlex.split(match.group(1))
    except ValueError:
        return match.group(1).split()


def _resolve(arg: str, ssh_dir: Path) -> Path:
    # ssh_config(5): relative Include paths are relative to ~/.ssh
    path = Path(os.path.expanduser(arg))
    if not path.is_absolute():
        path = ssh_dir / path
    return Path(os.path.normpath(path))


def _is_hosts_include(args: list[str], target: Path, ssh_dir: Path) -> bool:
    """True for any include of a hosts document, ours or a stale copy."""
    for arg in args:
        path = _resolve(arg, ssh_dir)
        if path == target:
            return True
        if path.name == target.name and path.parent.name == target.parent.name:
            return True
    return False


def find_hosts_includes(lines: list[str], hosts_file: Path, ssh_dir: Path) -> list[int]:
    """Indexes of Include directives that reference a hosts document."""
    target = Path(os.path.normpath(hosts_file.expanduser()))
    found = []
    for i, line in enumerate(lines):
        args = include_args(line)
        if args is None:
            continue
        after_marker = i > 0 and lines[i - 1].strip() == MARKER
        if after_marker or _is_hosts_include(args, target, ssh_dir):
            found.append(i)
    return found


def install_include(ssh_config: Path, hosts_file: Path, force: bool = False) -> bool:
    """Make ``ssh_config`` include ``hosts_file`` exactly once.

    An include of the same document at a different path (an older
    dotfiles location, say) is replaced rather than duplicated. Other
    Include directives are left alone.

    Args:
        ssh_config: The SSH client config, usually ``~/.ssh/config``.
        hosts_file: Rendered registry document.
        force: Rewrite the directive even if it is already correct.

    Returns:
        bool: True if the config file was modified.
    """
    ssh_config = ssh_config.expanduser()
    ssh_dir = ssh_config.parent
    target = Path(os.path.normpath(hosts_file.expanduser()))

    text = ssh_config.read_text(encoding="utf-8") if ssh_config.exists() else ""
    lines = text.splitlines()
    matches = find_hosts_includes(lines, target, ssh_dir)

    correct = [
        i for i in matches
        if [_resolve(a, ssh_dir) for a in include_args(lines[i]) or []] == [target]
    ]
    if not force and len(matches) == 1 and correct == matches:
        logger.info("Hosts file already included in SSH config")
        _tighten(ssh_config)
        return False

    if matches and not correct:
        logger.info("Replacing stale hosts inclusion in SSH config")
    else:
        logger.info("Adding hosts file inclusion to SSH config")

    drop = set(matches)
    drop.update(i - 1 for i in matches if i > 0 and lines[i - 1].strip() == MARKER)
    drop.update(i for i, line in enumerate(lines) if line.strip() == MARKER)
    remainder = [line for i, line in enumerate(lines) if i not in drop]
    while remainder and not remainder[0].strip():
        remainder.pop(0)

    new_lines = [MARKER, f"Include {_quote(str(target))}"]
    if remainder:
        new_lines += [""] + remainder
    new_text = "\n".join(new_lines) + "\n"

    if new_text == text:
        _tighten(ssh_config)
        return False

    _backup(ssh_config)
    ssh_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    write_atomic(ssh_config, new_text, mode=0o600)
    logger.info("Hosts file included in SSH config")
    return True


def _quote(path: str) -> str:
    return f'"{path}"' if any(c.isspace() for c in path) else path


def _backup(ssh_config: Path) -> Optional[Path]:
    if not ssh_config.exists() or ssh_config.stat().st_size == 0:
        return None
    stamp = datetime.now().strftime("%Y%m%d%H%M%S")
    backup = ssh_config.with_name(f"{ssh_config.name}.bak.{stamp}")
    shutil.copy2(ssh_config, backup)
    logger.debug("Backed up SSH config to %s", backup)
    return backup


def _tighten(path: Path) -> None:
    if path.exists():
        path.chmod(0o600)
