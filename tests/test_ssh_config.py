"""Tests for installing the hosts Include into ~/.ssh/config."""

from __future__ import annotations

from pathlib import Path

import pytest

from hostmesh.records import build_record, write_record
from hostmesh.registry import rebuild
from hostmesh.ssh_config import MARKER, find_hosts_includes, include_args, install_include


@pytest.fixture
def layout(tmp_path: Path):
    """A home with ~/.ssh and a dotfiles registry of alpha and beta."""
    ssh_dir = tmp_path / ".ssh"
    ssh_dir.mkdir()
    hosts_d = tmp_path / "dotfiles" / ".ssh" / "hosts.d"
    hosts_d.mkdir(parents=True)
    write_record(build_record("alpha", "josh", addresses=["10.0.0.1"]), hosts_d)
    write_record(build_record("beta", "josh", addresses=["10.0.0.2"]), hosts_d)
    hosts_file = hosts_d.parent / "hosts"
    rebuild(hosts_d, hosts_file)
    return ssh_dir / "config", hosts_file


def _includes(text: str) -> list[str]:
    return [line for line in text.splitlines() if include_args(line) is not None]


class TestIncludeArgs:
    """Tests for Include directive detection."""

    def test_plain(self) -> None:
        assert include_args("Include /a/hosts") == ["/a/hosts"]

    def test_case_and_equals(self) -> None:
        assert include_args("  include=/a/hosts") == ["/a/hosts"]

    def test_quoted_path(self) -> None:
        assert include_args('Include "/my files/hosts"') == ["/my files/hosts"]

    def test_not_include(self) -> None:
        assert include_args("# Include /a/hosts") is None
        assert include_args("IncludeFoo bar") is None
        assert include_args("Host include") is None


class TestInstallInclude:
    """Tests for install_include."""

    def test_creates_config(self, layout) -> None:
        ssh_config, hosts_file = layout
        assert install_include(ssh_config, hosts_file) is True

        text = ssh_config.read_text()
        assert text.splitlines()[:2] == [MARKER, f"Include {hosts_file}"]
        assert ssh_config.stat().st_mode & 0o777 == 0o600

    def test_idempotent(self, layout) -> None:
        ssh_config, hosts_file = layout
        install_include(ssh_config, hosts_file)
        before = ssh_config.read_text()

        assert install_include(ssh_config, hosts_file) is False
        assert ssh_config.read_text() == before
        assert not list(ssh_config.parent.glob("config.bak.*"))

    def test_replaces_include_of_different_path(self, layout) -> None:
        """An include of an old hosts location is replaced, not duplicated."""
        ssh_config, hosts_file = layout
        ssh_config.write_text(
            "Include /home/josh/old-dotfiles/.ssh/hosts\n"
            "\n"
            "Host work\n"
            "    HostName work.example.com\n"
        )

        assert install_include(ssh_config, hosts_file) is True

        text = ssh_config.read_text()
        assert _includes(text) == [f"Include {hosts_file}"]
        assert "Host work\n    HostName work.example.com" in text
        assert text.index("Include") < text.index("Host work")

    def test_similar_path_not_mistaken(self, layout) -> None:
        """A hosts.bak include is left alone and ours is added."""
        ssh_config, hosts_file = layout
        stale = f"Include {hosts_file}.bak"
        ssh_config.write_text(stale + "\n")

        assert install_include(ssh_config, hosts_file) is True
        assert _includes(ssh_config.read_text()) == [f"Include {hosts_file}", stale]

    def test_unrelated_includes_kept(self, layout) -> None:
        ssh_config, hosts_file = layout
        ssh_config.write_text("Include config.d/*\n")
        install_include(ssh_config, hosts_file)
        assert "Include config.d/*" in ssh_config.read_text()

    def test_duplicate_includes_collapsed(self, layout) -> None:
        ssh_config, hosts_file = layout
        ssh_config.write_text(
            f"Host a\n    User x\nInclude {hosts_file}\nInclude {hosts_file}\n"
        )
        assert install_include(ssh_config, hosts_file) is True
        text = ssh_config.read_text()
        assert _includes(text) == [f"Include {hosts_file}"]
        assert text.startswith(MARKER)

    def test_single_correct_include_left_in_place(self, layout) -> None:
        ssh_config, hosts_file = layout
        original = f"Host a\n    User x\n\n{MARKER}\nInclude {hosts_file}\n"
        ssh_config.write_text(original)
        assert install_include(ssh_config, hosts_file) is False
        assert ssh_config.read_text() == original

    def test_tilde_include_recognized(self, layout, monkeypatch) -> None:
        ssh_config, hosts_file = layout
        monkeypatch.setenv("HOME", str(ssh_config.parent.parent))
        ssh_config.write_text("Include ~/dotfiles/.ssh/hosts\n")
        assert install_include(ssh_config, hosts_file) is False

    def test_force_on_canonical_config_is_stable(self, layout) -> None:
        ssh_config, hosts_file = layout
        ssh_config.write_text(f"{MARKER}\nInclude {hosts_file}\n")
        assert install_include(ssh_config, hosts_file, force=True) is False
        assert _includes(ssh_config.read_text()) == [f"Include {hosts_file}"]

    def test_backup_made_before_change(self, layout) -> None:
        ssh_config, hosts_file = layout
        ssh_config.write_text("Host a\n    User x\n")
        install_include(ssh_config, hosts_file)
        backups = list(ssh_config.parent.glob("config.bak.*"))
        assert len(backups) == 1
        assert backups[0].read_text() == "Host a\n    User x\n"


class TestFindHostsIncludes:
    """Tests for locating existing hosts includes."""

    def test_marker_line_claims_next_include(self, tmp_path: Path) -> None:
        lines = [MARKER, "Include /somewhere/else/entirely"]
        assert find_hosts_includes(lines, tmp_path / "dotfiles/.ssh/hosts", tmp_path) == [1]
