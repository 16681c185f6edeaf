"""
Key distributor: push this machine's public key to every other host.

Best effort by design: every host gets its own attempt, a failure on
one never stops the others, and each failure comes back with the
command to fix it by hand. Addresses on a VM-to-host NAT bridge are
skipped because only that one host/guest pair can reach them.
"""

from __future__ import annotations

import ipaddress
import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from .errors import CredentialMissingError
from .models import (
    DEFAULT_BRIDGE_NETWORKS,
    DistributionFailure,
    DistributionReport,
    DistributionSkip,
    HostRecord,
    Registry,
)

logger = logging.getLogger("hostmesh.distribute")

# Reads the key from stdin and appends it unless already present.
APPEND_KEY_SCRIPT = (
    'umask 077; mkdir -p ~/.ssh && key="$(cat)" && '
    '{ grep -qxF "$key" ~/.ssh/authorized_keys 2>/dev/null || '
    'printf "%s\\n" "$key" >> ~/.ssh/authorized_keys; }'
)


def _run(cmd: list[str], input_text: str) -> subprocess.CompletedProcess:
    """Run a command with ``input_text`` on stdin."""
    return subprocess.run(
        cmd, input=input_text, capture_output=True, text=True, check=False,
    )


def public_key_path(identity_file: str) -> Path:
    return Path(f"{identity_file}.pub").expanduser()


def load_public_key(identity_file: str) -> str:
    """Read the public half of ``identity_file``.

    Raises:
        CredentialMissingError: If the ``.pub`` file does not exist.
    """
    path = public_key_path(identity_file)
    if not path.is_file():
        raise CredentialMissingError(
            f"Public key not found at {path}. Run 'hostmesh bootstrap' to generate it."
        )
    key = path.read_text(encoding="utf-8").strip()
    if not key:
        raise CredentialMissingError(f"Public key file {path} is empty")
    return key


def in_bridge_network(address: str, networks: Sequence[str]) -> bool:
    """True if ``address`` is an IP inside one of ``networks``.

    Hostnames are never considered bridge addresses.
    """
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    for net in networks:
        try:
            if ip in ipaddress.ip_network(net, strict=False):
                return True
        except ValueError:
            logger.warning("Ignoring invalid bridge network %r", net)
    return False


def push_key(target: str, public_key: str) -> subprocess.CompletedProcess:
    """Append ``public_key`` to ``target``'s authorized_keys over ssh."""
    cmd = ["ssh", "-o", "StrictHostKeyChecking=accept-new", target, APPEND_KEY_SCRIPT]
    return _run(cmd, public_key + "\n")


def _candidates(record: HostRecord, networks: Sequence[str]) -> list[str]:
    if not record.addresses:
        return [record.canonical_name]
    return [a for a in record.addresses if not in_bridge_network(a, networks)]


def _target(record: HostRecord, address: str) -> str:
    return f"{record.login_user}@{address}" if record.login_user else address


def distribute(
    registry: Registry,
    public_key: str,
    local_name: Optional[str] = None,
    bridge_networks: Sequence[str] = DEFAULT_BRIDGE_NETWORKS,
    key_path: Optional[Path] = None,
) -> DistributionReport:
    """Push ``public_key`` to every host in ``registry`` except this one.

    Each host's addresses are tried in order (primary first) until one
    accepts the key.

    Args:
        registry: Merged host registry.
        public_key: OpenSSH public key line.
        local_name: This machine's canonical name, which is skipped.
        bridge_networks: CIDRs whose addresses are never attempted.
        key_path: Public key path, shown in remediation commands.

    Returns:
        DistributionReport covering every host.
    """
    report = DistributionReport()
    key_ref = str(key_path) if key_path else "~/.ssh/id_ed25519.pub"

    for record in registry.ordered():
        name = record.canonical_name
        if name == local_name:
            continue

        candidates = _candidates(record, bridge_networks)
        if not candidates:
            logger.warning(
                "Skipping %s: %s is on a virtualization bridge and only reachable from its VM host",
                name, record.primary_address,
            )
            report.skipped.append(DistributionSkip(
                name=name, reason=f"bridge address {record.primary_address}",
            ))
            continue

        error = ""
        target = ""
        for address in candidates:
            target = _target(record, address)
            logger.info("Copying key to %s (%s)", name, target)
            try:
                result = push_key(target, public_key)
            except OSError as exc:
                error = str(exc)
                break
            if result.returncode == 0:
                error = ""
                break
            error = (result.stderr or result.stdout).strip() or f"ssh exited {result.returncode}"
            logger.debug("Key push to %s failed: %s", target, error)

        if not error:
            report.succeeded.append(name)
            continue

        logger.warning("Could not copy key to %s: %s", name, error)
        report.failed.append(DistributionFailure(
            name=name,
            target=target,
            error=error,
            remediation=f"ssh-copy-id -i {key_ref} {target}",
        ))

    if report.failed:
        logger.warning(
            "Key distribution incomplete: %d succeeded, %d failed",
            len(report.succeeded), len(report.failed),
        )
    return report
