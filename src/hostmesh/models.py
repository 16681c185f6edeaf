"""
Pydantic models for the host registry and its configuration.

A HostRecord is one machine's SSH connection descriptor. The Registry
is every record in the shared dotfiles, keyed by canonical name.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_IDENTITY_FILE = "~/.ssh/id_ed25519"
DEFAULT_FALLBACK_NAME = "localhost"

# libvirt's default NAT bridge and VirtualBox's guest NAT network.
DEFAULT_BRIDGE_NETWORKS = ["192.168.122.0/24", "10.0.2.0/24"]


class HostRecord(BaseModel):
    """One machine's connection descriptor.

    Attributes:
        canonical_name: Sanitized, registry-unique host alias.
        reported_name: The hostname the machine reported about itself.
        primary_address: Address for the main ``Host`` entry (may be empty).
        alternate_addresses: Secondary addresses, exposed as ``<name>-ipN``.
        login_user: Account to log in as.
        identity_file: Path reference to the private key used to connect.
        created_at: First registration time; preserved on re-registration.
        source: File name the record was read from (not serialized).
    """

    model_config = ConfigDict(frozen=True)

    canonical_name: str
    reported_name: str = ""
    primary_address: str = ""
    alternate_addresses: list[str] = Field(default_factory=list)
    login_user: str = ""
    identity_file: str = DEFAULT_IDENTITY_FILE
    created_at: Optional[datetime] = None
    source: Optional[str] = Field(default=None, exclude=True)

    @property
    def addresses(self) -> list[str]:
        """Primary address followed by the alternates."""
        head = [self.primary_address] if self.primary_address else []
        return head + list(self.alternate_addresses)

    def alias_names(self) -> list[str]:
        """Host aliases for the alternate addresses, in order."""
        return [
            f"{self.canonical_name}-ip{i}"
            for i in range(1, len(self.alternate_addresses) + 1)
        ]


class Registry(BaseModel):
    """All known hosts, keyed by canonical name.

    Attributes:
        records: Canonical name to record, in merge order.
        skipped: Record files that could not be parsed.
    """

    records: dict[str, HostRecord] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, name: object) -> bool:
        return name in self.records

    def get(self, name: str) -> Optional[HostRecord]:
        return self.records.get(name)

    def ordered(self) -> list[HostRecord]:
        """Records sorted by the file they came from, then by name."""
        return sorted(
            self.records.values(),
            key=lambda r: (r.source or f"{r.canonical_name}.conf", r.canonical_name),
        )


class DistributionFailure(BaseModel):
    """A host the public key could not be pushed to."""

    name: str
    target: str
    error: str
    remediation: str


class DistributionSkip(BaseModel):
    """A host that was deliberately not attempted."""

    name: str
    reason: str


class DistributionReport(BaseModel):
    """Outcome of a key distribution run."""

    succeeded: list[str] = Field(default_factory=list)
    failed: list[DistributionFailure] = Field(default_factory=list)
    skipped: list[DistributionSkip] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True only when no attempted host failed."""
        return not self.failed

    @property
    def attempted(self) -> list[str]:
        return self.succeeded + [f.name for f in self.failed]


class HostmeshConfig(BaseModel):
    """User configuration, loaded from ``<home>/config.yaml``."""

    dotfiles_dir: Path = Path("~/dotfiles")
    repo_url: str = "https://github.com/sudoflux/dotfiles.git"
    branch: str = "main"
    ssh_dir: Path = Path("~/.ssh")
    ssh_config: Path = Path("~/.ssh/config")
    identity_file: str = DEFAULT_IDENTITY_FILE
    github_key: Path = Path("~/.ssh/github_ed25519")
    fallback_name: str = DEFAULT_FALLBACK_NAME
    login_user: Optional[str] = None
    bridge_networks: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BRIDGE_NETWORKS)
    )
    search_domain: str = "lab"
    cron_schedule: str = "0 * * * *"
    min_neovim: str = "0.9.0"

    @property
    def dotfiles_path(self) -> Path:
        return self.dotfiles_dir.expanduser()

    @property
    def hosts_dir(self) -> Path:
        """Directory of per-host record files inside the dotfiles."""
        return self.dotfiles_path / ".ssh" / "hosts.d"

    @property
    def hosts_file(self) -> Path:
        """The rendered registry document inside the dotfiles."""
        return self.dotfiles_path / ".ssh" / "hosts"

    @property
    def ssh_config_path(self) -> Path:
        return self.ssh_config.expanduser()

    @property
    def identity_path(self) -> Path:
        return Path(self.identity_file).expanduser()
