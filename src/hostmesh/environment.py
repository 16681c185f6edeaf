"""
Environment detection: which machine are we provisioning?

Produces one immutable Environment value that every other component
receives explicitly. The OS is reduced to a closed OSFamily variant,
and per-family behaviour (package manager, package list, SSH service)
lives in the PLATFORM_PROFILES lookup table.
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
import shlex
import socket
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("hostmesh.environment")

OS_RELEASE_PATH = Path("/etc/os-release")


class OSFamily(str, Enum):
    """Operating system families hostmesh knows how to provision."""

    DEBIAN = "debian"
    REDHAT = "redhat"
    ARCH = "arch"
    MACOS = "macos"
    WINDOWS = "windows"
    OTHER = "other"


class OSRelease(BaseModel):
    """The fields of /etc/os-release that matter to us."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    id_like: list[str] = Field(default_factory=list)
    name: str = ""
    version_id: str = ""
    pretty_name: str = ""


class PlatformProfile(BaseModel):
    """How to do things on one OS family."""

    model_config = ConfigDict(frozen=True)

    install_cmd: list[str] = Field(default_factory=list)
    refresh_cmd: list[str] = Field(default_factory=list)
    packages: list[str] = Field(default_factory=list)
    ssh_service: str = ""
    needs_sudo: bool = True
    manual_note: str = ""


PLATFORM_PROFILES: dict[OSFamily, PlatformProfile] = {
    OSFamily.DEBIAN: PlatformProfile(
        install_cmd=["apt-get", "install", "-y"],
        refresh_cmd=["apt-get", "update", "-qq"],
        packages=[
            "curl", "git", "build-essential", "python3", "python3-pip",
            "openssh-server",
        ],
        ssh_service="ssh",
    ),
    OSFamily.REDHAT: PlatformProfile(
        install_cmd=["dnf", "install", "-y"],
        packages=[
            "curl", "git", "gcc", "gcc-c++", "make", "python3", "python3-pip",
            "openssh-server",
        ],
        ssh_service="sshd",
    ),
    OSFamily.ARCH: PlatformProfile(
        install_cmd=["pacman", "-Sy", "--noconfirm"],
        packages=["curl", "git", "base-devel", "python", "python-pip", "openssh"],
        ssh_service="sshd",
    ),
    OSFamily.MACOS: PlatformProfile(
        install_cmd=["brew", "install"],
        refresh_cmd=["brew", "update"],
        packages=["curl", "git", "python3", "openssh", "neovim"],
        needs_sudo=False,
    ),
    OSFamily.WINDOWS: PlatformProfile(
        needs_sudo=False,
        manual_note="On Windows, please install Git, Python, OpenSSH Server, and Neovim manually.",
    ),
    OSFamily.OTHER: PlatformProfile(
        manual_note="Please manually install: curl, git, compiler tools, python3, pip, openssh-server",
    ),
}

_DISTRO_FAMILIES = {
    "ubuntu": OSFamily.DEBIAN,
    "debian": OSFamily.DEBIAN,
    "fedora": OSFamily.REDHAT,
    "centos": OSFamily.REDHAT,
    "rhel": OSFamily.REDHAT,
    "arch": OSFamily.ARCH,
}


class Environment(BaseModel):
    """Everything hostmesh needs to know about the local machine."""

    model_config = ConfigDict(frozen=True)

    os_family: OSFamily
    distro: str
    hostname: str
    user: str
    home: Path
    os_release: Optional[OSRelease] = None

    @property
    def profile(self) -> PlatformProfile:
        """Behaviour table entry for this OS family."""
        return PLATFORM_PROFILES[self.os_family]

    @property
    def is_linux(self) -> bool:
        return self.os_family in (OSFamily.DEBIAN, OSFamily.REDHAT, OSFamily.ARCH) or (
            self.os_family == OSFamily.OTHER and self.os_release is not None
        )


def parse_os_release(text: str) -> OSRelease:
    """Parse the KEY=value format of /etc/os-release.

    Values may be quoted shell-style. Unknown keys, comments, and
    malformed lines are ignored.

    Args:
        text: File contents.

    Returns:
        OSRelease with whatever fields were present.
    """
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            continue
        values[key.strip().upper()] = parts[0] if parts else ""

    return OSRelease(
        id=values.get("ID", "").lower(),
        id_like=values.get("ID_LIKE", "").lower().split(),
        name=values.get("NAME", ""),
        version_id=values.get("VERSION_ID", ""),
        pretty_name=values.get("PRETTY_NAME", ""),
    )


def family_for(release: OSRelease) -> OSFamily:
    """Map a Linux distribution to its OS family.

    Falls back to ID_LIKE so derivatives (mint, rocky, manjaro, ...)
    land in their parent's family.
    """
    for candidate in [release.id, *release.id_like]:
        family = _DISTRO_FAMILIES.get(candidate)
        if family is not None:
            return family
    return OSFamily.OTHER


def detect_environment(os_release_path: Path = OS_RELEASE_PATH) -> Environment:
    """Probe the running machine.

    Args:
        os_release_path: Where to read the Linux release file from.

    Returns:
        An immutable Environment.
    """
    system = platform.system()
    release: Optional[OSRelease] = None

    if os_release_path.is_file():
        release = parse_os_release(os_release_path.read_text(encoding="utf-8"))
        family = family_for(release)
        distro = release.id or "linux"
        logger.info("Linux distro: %s (%s)", distro, family.value)
    elif system == "Darwin":
        family, distro = OSFamily.MACOS, "macos"
        logger.info("macOS detected")
    elif system == "Windows" or system.upper().startswith(("MINGW", "MSYS", "CYGWIN")):
        family, distro = OSFamily.WINDOWS, "windows"
        logger.info("Windows detected")
    else:
        family, distro = OSFamily.OTHER, system.lower() or "unknown"
        logger.warning("Unsupported OS: %s", system or "unknown")

    return Environment(
        os_family=family,
        distro=distro,
        hostname=socket.gethostname(),
        user=_current_user(),
        home=Path.home(),
        os_release=release,
    )


def _current_user() -> str:
    """Login name of the invoking user, falling back to $USER."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER", "") or os.environ.get("USERNAME", "")
