"""Tests for environment detection and the platform table."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hostmesh.environment import (
    PLATFORM_PROFILES,
    OSFamily,
    detect_environment,
    family_for,
    parse_os_release,
)

UBUNTU = """\
PRETTY_NAME="Ubuntu 24.04.1 LTS"
NAME="Ubuntu"
VERSION_ID="24.04"
ID=ubuntu
ID_LIKE=debian
"""

ROCKY = """\
NAME="Rocky Linux"
ID="rocky"
ID_LIKE="rhel centos fedora"
VERSION_ID="9.4"
"""


class TestParseOsRelease:
    """Tests for the /etc/os-release parser."""

    def test_quoted_and_bare_values(self) -> None:
        release = parse_os_release(UBUNTU)
        assert release.id == "ubuntu"
        assert release.id_like == ["debian"]
        assert release.name == "Ubuntu"
        assert release.version_id == "24.04"
        assert release.pretty_name == "Ubuntu 24.04.1 LTS"

    def test_comments_and_junk_ignored(self) -> None:
        release = parse_os_release('# comment\nnonsense line\nID="arch"\nBROKEN="unterminated\n')
        assert release.id == "arch"

    def test_empty(self) -> None:
        assert parse_os_release("").id == ""


class TestFamilyFor:
    """Tests for distro to family mapping."""

    @pytest.mark.parametrize("text,family", [
        (UBUNTU, OSFamily.DEBIAN),
        ("ID=fedora\n", OSFamily.REDHAT),
        ("ID=arch\n", OSFamily.ARCH),
        (ROCKY, OSFamily.REDHAT),
        ("ID=linuxmint\nID_LIKE=\"ubuntu debian\"\n", OSFamily.DEBIAN),
        ("ID=alpine\n", OSFamily.OTHER),
    ])
    def test_mapping(self, text: str, family: OSFamily) -> None:
        assert family_for(parse_os_release(text)) == family


class TestPlatformProfiles:
    """Every family has a behaviour entry."""

    def test_all_families_covered(self) -> None:
        assert set(PLATFORM_PROFILES) == set(OSFamily)

    def test_manual_platforms_have_notes(self) -> None:
        for family in (OSFamily.WINDOWS, OSFamily.OTHER):
            profile = PLATFORM_PROFILES[family]
            assert not profile.install_cmd
            assert profile.manual_note

    def test_ssh_service_names(self) -> None:
        assert PLATFORM_PROFILES[OSFamily.DEBIAN].ssh_service == "ssh"
        assert PLATFORM_PROFILES[OSFamily.REDHAT].ssh_service == "sshd"


class TestDetectEnvironment:
    """Tests for detect_environment."""

    def test_linux_from_os_release(self, tmp_path: Path) -> None:
        release = tmp_path / "os-release"
        release.write_text(UBUNTU)
        with patch("hostmesh.environment.socket.gethostname", return_value="Lab-Box"):
            env = detect_environment(release)
        assert env.os_family == OSFamily.DEBIAN
        assert env.distro == "ubuntu"
        assert env.hostname == "Lab-Box"
        assert env.is_linux is True
        assert env.profile.install_cmd[0] == "apt-get"

    def test_macos(self, tmp_path: Path) -> None:
        with patch("hostmesh.environment.platform.system", return_value="Darwin"):
            env = detect_environment(tmp_path / "missing")
        assert env.os_family == OSFamily.MACOS
        assert env.is_linux is False

    def test_git_bash_is_windows(self, tmp_path: Path) -> None:
        with patch("hostmesh.environment.platform.system", return_value="MINGW64_NT-10.0"):
            env = detect_environment(tmp_path / "missing")
        assert env.os_family == OSFamily.WINDOWS

    def test_unknown_os(self, tmp_path: Path) -> None:
        with patch("hostmesh.environment.platform.system", return_value="SunOS"):
            env = detect_environment(tmp_path / "missing")
        assert env.os_family == OSFamily.OTHER
        assert env.distro == "sunos"

    def test_environment_is_immutable(self, environment) -> None:
        with pytest.raises(ValidationError):
            environment.hostname = "other"
