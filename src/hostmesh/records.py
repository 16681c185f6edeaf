"""
Host record store: one SSH config block file per machine.

Each registered machine owns exactly one file in the dotfiles'
``.ssh/hosts.d/`` directory::

    # Host: My-Laptop
    # Added: 2026-03-01T09:30:00+00:00
    # User: josh
    Host my-laptop
        HostName 192.168.1.20
        User josh
        AddKeysToAgent yes
        IdentityFile ~/.ssh/id_ed25519
        StrictHostKeyChecking no

    # IP alias 1 for My-Laptop
    Host my-laptop-ip1
        HostName 10.8.0.3
        ...

The file is valid ssh_config syntax on its own, and it is the unit of
ownership: a machine only ever rewrites its own file, in full.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from .errors import InvalidNameError, RecordParseError
from .models import DEFAULT_FALLBACK_NAME, DEFAULT_IDENTITY_FILE, HostRecord

logger = logging.getLogger("hostmesh.records")

RECORD_SUFFIX = ".conf"

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]")
_VALID_NAME = re.compile(r"^[a-z0-9-]+$")
_META_COMMENT = re.compile(r"^#\s*(Host|Added|User):\s*(.*)$")
_HOST_LINE = re.compile(r"^Host\s+(\S+)\s*$", re.IGNORECASE)
_LEGACY_DATE_FORMATS = ("%a %b %d %H:%M:%S %Z %Y", "%a %d %b %Y %H:%M:%S %Z")

_IP_INET = re.compile(r"\binet (?:addr:)?(\d{1,3}(?:\.\d{1,3}){3})")
_IPCONFIG_INET = re.compile(r"IPv4 Address[ .]*:\s*(\d{1,3}(?:\.\d{1,3}){3})", re.IGNORECASE)


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    """Run a command and capture its output."""
    return subprocess.run(cmd, capture_output=True, text=True, check=False)


# ---------------------------------------------------------------------------
# Names and addresses
# ---------------------------------------------------------------------------

def sanitize_name(name: str, fallback: str = DEFAULT_FALLBACK_NAME) -> str:
    """Reduce a reported hostname to a canonical registry name.

    Lowercases and drops everything that is not ``[a-z0-9-]``.

    Args:
        name: Hostname as reported by the machine.
        fallback: Name to use when nothing survives sanitization.

    Returns:
        str: The canonical name.

    Raises:
        InvalidNameError: If both the name and the fallback sanitize
            to an empty string.
    """
    clean = _INVALID_NAME_CHARS.sub("", (name or "").lower())
    if clean:
        return clean

    clean_fallback = _INVALID_NAME_CHARS.sub("", (fallback or "").lower())
    if not clean_fallback:
        raise InvalidNameError(
            f"Hostname {name!r} has no usable characters and no fallback is configured"
        )
    logger.warning("Could not determine valid hostname, using '%s'", clean_fallback)
    return clean_fallback


def discover_local_addresses() -> list[str]:
    """List this machine's non-loopback IPv4 addresses.

    Tries ``ip``, then ``ifconfig``, then Windows ``ipconfig``, and
    keeps the order the tool reports. An empty list means the
    addresses could not be determined; that is not an error.

    Returns:
        list[str]: Addresses, primary interface first.
    """
    if shutil.which("ip"):
        output = _capture(["ip", "-4", "-o", "addr", "show"])
        found = _IP_INET.findall(output)
    elif shutil.which("ifconfig"):
        found = _IP_INET.findall(_capture(["ifconfig"]))
    elif shutil.which("ipconfig"):
        found = _IPCONFIG_INET.findall(_capture(["ipconfig"]))
    else:
        found = []

    addresses: list[str] = []
    for addr in found:
        if addr.startswith("127.") or addr in addresses:
            continue
        addresses.append(addr)

    if not addresses:
        logger.warning("Could not determine any non-loopback IPv4 address")
    return addresses


def _capture(cmd: list[str]) -> str:
    try:
        result = _run(cmd)
    except OSError as exc:
        logger.debug("%s failed: %s", cmd[0], exc)
        return ""
    if result.returncode != 0:
        logger.debug("%s exited %d: %s", cmd[0], result.returncode, result.stderr)
        return ""
    return result.stdout


# ---------------------------------------------------------------------------
# Build / render
# ---------------------------------------------------------------------------

def build_record(
    name: str,
    user: str,
    identity_ref: str = DEFAULT_IDENTITY_FILE,
    addresses: Sequence[str] = (),
    fallback: str = DEFAULT_FALLBACK_NAME,
    created_at: Optional[datetime] = None,
) -> HostRecord:
    """Construct the record for one machine.

    Args:
        name: Hostname as reported by the machine.
        user: Login user.
        identity_ref: Path reference to the private key.
        addresses: Discovered addresses; the first becomes primary.
        fallback: Canonical name to use if ``name`` sanitizes to nothing.
        created_at: First registration time, if already known.

    Returns:
        HostRecord

    Raises:
        InvalidNameError: If no canonical name can be derived.
    """
    addrs = [a for a in addresses if a]
    return HostRecord(
        canonical_name=sanitize_name(name, fallback),
        reported_name=name or "",
        primary_address=addrs[0] if addrs else "",
        alternate_addresses=addrs[1:],
        login_user=user,
        identity_file=identity_ref,
        created_at=created_at,
    )


def _host_block(alias: str, address: str, record: HostRecord) -> list[str]:
    lines = [f"Host {alias}"]
    if address:
        lines.append(f"    HostName {address}")
    lines += [
        f"    User {record.login_user}",
        "    AddKeysToAgent yes",
        f"    IdentityFile {record.identity_file}",
        "    StrictHostKeyChecking no",
        "",
    ]
    return lines


def render_record(record: HostRecord) -> str:
    """Render a record as its ssh_config block text."""
    reported = record.reported_name or record.canonical_name
    lines = [f"# Host: {reported}"]
    if record.created_at is not None:
        lines.append(f"# Added: {record.created_at.isoformat()}")
    lines.append(f"# User: {record.login_user}")
    lines += _host_block(record.canonical_name, record.primary_address, record)

    for i, (alias, address) in enumerate(
        zip(record.alias_names(), record.alternate_addresses), start=1
    ):
        lines.append(f"# IP alias {i} for {reported}")
        lines += _host_block(alias, address, record)

    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Parse
# ---------------------------------------------------------------------------

@dataclass
class _Block:
    alias: str
    lineno: int
    options: dict[str, str] = field(default_factory=dict)


def parse_record(text: str, source: Optional[str] = None) -> HostRecord:
    """Parse one host record file.

    Args:
        text: File contents.
        source: File name, used in errors and kept on the record.

    Returns:
        HostRecord

    Raises:
        RecordParseError: If the text is not a well-formed record.
    """
    meta: dict[str, str] = {}
    blocks: list[_Block] = []

    for lineno, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            match = _META_COMMENT.match(stripped)
            if match and not blocks:
                meta[match.group(1)] = match.group(2).strip()
            continue
        if raw[0] in " \t":
            if not blocks:
                raise RecordParseError(f"line {lineno}: option outside a Host entry", source)
            key, value = _split_option(stripped)
            if not value:
                raise RecordParseError(f"line {lineno}: {key} has no value", source)
            blocks[-1].options[key.lower()] = value
            continue
        match = _HOST_LINE.match(stripped)
        if not match:
            raise RecordParseError(f"line {lineno}: unexpected {stripped!r}", source)
        blocks.append(_Block(alias=match.group(1), lineno=lineno))

    if not blocks:
        raise RecordParseError("no Host entries", source)

    primary = blocks[0]
    name = primary.alias
    if not _VALID_NAME.match(name):
        raise RecordParseError(f"invalid canonical name {name!r}", source)

    alias_re = re.compile(rf"^{re.escape(name)}-ip(\d+)$")
    alternates: list[tuple[int, str]] = []
    for block in blocks[1:]:
        match = alias_re.match(block.alias)
        if not match:
            raise RecordParseError(
                f"line {block.lineno}: Host {block.alias!r} is not an alias of {name!r}",
                source,
            )
        address = block.options.get("hostname", "")
        if not address:
            raise RecordParseError(f"line {block.lineno}: alias without HostName", source)
        alternates.append((int(match.group(1)), address))

    return HostRecord(
        canonical_name=name,
        reported_name=meta.get("Host") or name,
        primary_address=primary.options.get("hostname", ""),
        alternate_addresses=[addr for _, addr in sorted(alternates)],
        login_user=primary.options.get("user") or meta.get("User", ""),
        identity_file=primary.options.get("identityfile", DEFAULT_IDENTITY_FILE),
        created_at=_parse_timestamp(meta.get("Added")),
        source=source,
    )


def _split_option(line: str) -> tuple[str, str]:
    """Split an ssh_config option into keyword and value."""
    match = re.match(r"^(\S+?)(?:\s*=\s*|\s+)(.*)$", line)
    if not match:
        return line, ""
    return match.group(1), match.group(2).strip()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ``# Added:`` value.

    Accepts ISO-8601 and the ``date(1)`` output the shell version of
    this tool wrote. Anything else is treated as unknown.
    """
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    for fmt in _LEGACY_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    logger.debug("Unrecognized timestamp %r", value)
    return None


def read_record(path: Path) -> HostRecord:
    """Read and parse a record file.

    Raises:
        RecordParseError: If the file is unreadable or malformed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RecordParseError(str(exc), path.name) from exc
    return parse_record(text, source=path.name)


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------

def write_atomic(path: Path, text: str, mode: Optional[int] = None) -> None:
    """Replace ``path`` with ``text`` without exposing a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.parent / f".{path.name}.tmp"
    tmp_path.write_text(text, encoding="utf-8")
    if mode is not None:
        tmp_path.chmod(mode)
    tmp_path.replace(path)


def record_path(store_dir: Path, canonical_name: str) -> Path:
    return store_dir / f"{canonical_name}{RECORD_SUFFIX}"


def write_record(record: HostRecord, store_dir: Path) -> Path:
    """Create or fully replace a machine's record file.

    The whole file is rewritten, so alias entries from an earlier
    registration with more addresses never survive. The first
    ``created_at`` of an existing record is carried over.

    Args:
        record: Record to persist.
        store_dir: The ``hosts.d`` directory.

    Returns:
        Path: The record file.
    """
    path = record_path(store_dir, record.canonical_name)

    created_at = record.created_at
    if path.exists():
        try:
            existing = read_record(path)
        except RecordParseError as exc:
            logger.warning("Replacing unreadable record %s: %s", path.name, exc)
        else:
            created_at = existing.created_at or created_at
    if created_at is None:
        created_at = datetime.now(timezone.utc).replace(microsecond=0)

    record = record.model_copy(update={"created_at": created_at})
    write_atomic(path, render_record(record))

    logger.info(
        "Host registered: %s (%s)",
        record.canonical_name, record.primary_address or "no address",
    )
    return path
