"""Tests for the hostmesh CLI."""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from hostmesh import __version__
from hostmesh.cli import main
from hostmesh.config import config_path
from hostmesh.git import GitRepo
from hostmesh.models import DistributionFailure, DistributionReport
from hostmesh.records import build_record, write_record
from hostmesh.sync import SyncState


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def home_with_registry(hostmesh_home: Path, tmp_path: Path) -> Path:
    """A hostmesh home whose dotfiles hold two registered hosts."""
    dotfiles = tmp_path / "dotfiles"
    hosts_d = dotfiles / ".ssh" / "hosts.d"
    hosts_d.mkdir(parents=True)
    write_record(build_record("alpha", "josh", addresses=["10.0.0.1", "10.8.0.1"]), hosts_d)
    write_record(build_record("beta", "josh", addresses=["10.0.0.2"]), hosts_d)
    config_path(hostmesh_home).write_text(yaml.dump({
        "dotfiles_dir": str(dotfiles),
        "ssh_config": str(tmp_path / ".ssh" / "config"),
        "identity_file": str(tmp_path / ".ssh" / "id_ed25519"),
    }))
    return hostmesh_home


class TestMain:
    """Tests for the top-level group."""

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_commands_registered(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--help"])
        for name in ("bootstrap", "sync", "hosts", "distribute", "cron", "remote"):
            assert name in result.output


class TestHostsCommands:
    """Tests for hosts list / show."""

    def test_list_json(self, runner: CliRunner, home_with_registry: Path) -> None:
        result = runner.invoke(main, ["hosts", "list", "--home", str(home_with_registry), "--json-out"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [h["canonical_name"] for h in data] == ["alpha", "beta"]
        assert data[0]["alternate_addresses"] == ["10.8.0.1"]
        assert "source" not in data[0]

    def test_list_table(self, runner: CliRunner, home_with_registry: Path) -> None:
        result = runner.invoke(main, ["hosts", "list", "--home", str(home_with_registry)])
        assert result.exit_code == 0
        assert "alpha" in result.output
        assert "alpha-ip1" in result.output

    def test_list_empty(self, runner: CliRunner, hostmesh_home: Path, tmp_path: Path) -> None:
        config_path(hostmesh_home).write_text(yaml.dump({"dotfiles_dir": str(tmp_path / "none")}))
        result = runner.invoke(main, ["hosts", "list", "--home", str(hostmesh_home)])
        assert result.exit_code == 0
        assert "No hosts registered" in result.output

    def test_show(self, runner: CliRunner, home_with_registry: Path) -> None:
        result = runner.invoke(main, ["hosts", "show", "Alpha", "--home", str(home_with_registry)])
        assert result.exit_code == 0
        assert "10.0.0.1" in result.output

    def test_show_unknown(self, runner: CliRunner, home_with_registry: Path) -> None:
        result = runner.invoke(main, ["hosts", "show", "gamma", "--home", str(home_with_registry)])
        assert result.exit_code == 1
        assert "not registered" in result.output


class TestSyncCommand:
    """Tests for the sync command wiring."""

    def test_missing_dotfiles_exits_1(self, runner: CliRunner, hostmesh_home: Path, tmp_path: Path) -> None:
        config_path(hostmesh_home).write_text(yaml.dump({"dotfiles_dir": str(tmp_path / "none")}))
        result = runner.invoke(main, ["sync", "--home", str(hostmesh_home)])
        assert result.exit_code == 1
        assert "Dotfiles directory not found" in result.output

    def test_cron_flags_exclusive(self, runner: CliRunner, hostmesh_home: Path) -> None:
        result = runner.invoke(main, [
            "sync", "--home", str(hostmesh_home), "--install-cron", "--remove-cron",
        ])
        assert result.exit_code == 2

    def test_options_passed_through(self, runner: CliRunner, hostmesh_home: Path) -> None:
        state = SyncState(canonical_name="lab-box", registered=True, pull_ok=True)
        with patch("hostmesh.cli.sync_cmd.SyncProtocol") as proto:
            proto.return_value.run.return_value = state
            result = runner.invoke(main, [
                "sync", "--home", str(hostmesh_home), "--update-only", "--skip-pull", "-f",
            ])
        assert result.exit_code == 0
        options = proto.return_value.run.call_args[0][0]
        assert options.update_only and options.skip_pull and options.force
        assert options.distribute_keys is False
        assert "ssh lab-box" in result.output

    def test_install_cron_after_sync(self, runner: CliRunner, hostmesh_home: Path) -> None:
        with patch("hostmesh.cli.sync_cmd.SyncProtocol") as proto, \
                patch("hostmesh.cli.sync_cmd.install_cron", return_value=True) as cron:
            proto.return_value.run.return_value = SyncState()
            result = runner.invoke(main, ["sync", "--home", str(hostmesh_home), "--install-cron"])
        assert result.exit_code == 0
        cron.assert_called_once_with("0 * * * *")
        assert "Periodic sync scheduled" in result.output

    def test_partial_distribution_exits_1(self, runner: CliRunner, hostmesh_home: Path) -> None:
        report = DistributionReport(
            succeeded=["alpha"],
            failed=[DistributionFailure(
                name="beta", target="josh@10.0.0.2", error="timed out",
                remediation="ssh-copy-id -i ~/.ssh/id_ed25519.pub josh@10.0.0.2",
            )],
        )
        with patch("hostmesh.cli.sync_cmd.SyncProtocol") as proto:
            proto.return_value.run.return_value = SyncState(distribution=report)
            result = runner.invoke(main, ["sync", "--home", str(hostmesh_home), "--distribute-keys"])
        assert result.exit_code == 1
        assert "ssh-copy-id -i ~/.ssh/id_ed25519.pub josh@10.0.0.2" in result.output


class TestDistributeCommand:
    """Tests for the standalone distribute command."""

    def test_missing_key_exits_1(self, runner: CliRunner, home_with_registry: Path) -> None:
        result = runner.invoke(main, ["distribute", "--home", str(home_with_registry)])
        assert result.exit_code == 1
        assert "Public key not found" in result.output

    def test_reports_each_host(self, runner: CliRunner, home_with_registry: Path, tmp_path: Path) -> None:
        ssh_dir = tmp_path / ".ssh"
        ssh_dir.mkdir(exist_ok=True)
        (ssh_dir / "id_ed25519.pub").write_text("ssh-ed25519 AAAATEST josh@here\n")
        with patch("hostmesh.cli.hosts.distribute",
                   return_value=DistributionReport(succeeded=["alpha", "beta"])) as dist:
            result = runner.invoke(main, ["distribute", "--home", str(home_with_registry)])
        assert result.exit_code == 0
        assert dist.call_args[0][1] == "ssh-ed25519 AAAATEST josh@here"
        assert "key installed" in result.output


class TestCronCommands:
    """Tests for cron install/remove/status."""

    def test_install_uses_config_schedule(self, runner: CliRunner, hostmesh_home: Path) -> None:
        config_path(hostmesh_home).write_text(yaml.dump({"cron_schedule": "*/30 * * * *"}))
        with patch("hostmesh.cli.cron_cmd.install_cron", return_value=True) as cron:
            result = runner.invoke(main, ["cron", "install", "--home", str(hostmesh_home)])
        assert result.exit_code == 0
        cron.assert_called_once_with("*/30 * * * *")

    def test_install_bad_schedule(self, runner: CliRunner, hostmesh_home: Path) -> None:
        with patch("hostmesh.cli.cron_cmd.install_cron", side_effect=ValueError("Invalid cron schedule")):
            result = runner.invoke(main, ["cron", "install", "--home", str(hostmesh_home),
                                          "--schedule", "hourly"])
        assert result.exit_code == 1

    def test_status_none(self, runner: CliRunner) -> None:
        with patch("hostmesh.cli.cron_cmd.installed_entry", return_value=None):
            result = runner.invoke(main, ["cron", "status"])
        assert "No periodic sync" in result.output

    def test_remove(self, runner: CliRunner) -> None:
        with patch("hostmesh.cli.cron_cmd.remove_cron", return_value=True):
            result = runner.invoke(main, ["cron", "remove"])
        assert result.exit_code == 0
        assert "removed" in result.output


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestRemoteCommand:
    """Tests for remote use-ssh."""

    @pytest.fixture
    def home_with_clone(self, hostmesh_home: Path, config, clone_dotfiles) -> Path:
        clone_dotfiles(config)
        config.github_key.parent.mkdir(parents=True, exist_ok=True)
        Path(f"{config.github_key}.pub").write_text("ssh-ed25519 AAAAGITHUB josh@here\n")
        config_path(hostmesh_home).write_text(yaml.dump(config.model_dump(mode="json")))
        return hostmesh_home

    def test_switches_https_to_ssh(self, runner: CliRunner, home_with_clone: Path, config) -> None:
        repo = GitRepo(config.dotfiles_path)
        repo.set_remote_url("https://github.com/sudoflux/dotfiles.git")
        greeting = subprocess.CompletedProcess(
            [], 1, stdout="", stderr="Hi sudoflux! You've successfully authenticated.",
        )
        with patch("hostmesh.cli.remote._run", return_value=greeting) as ssh:
            result = runner.invoke(main, ["remote", "use-ssh", "--home", str(home_with_clone), "--yes"])

        assert result.exit_code == 0
        assert repo.remote_url() == "git@github.com:sudoflux/dotfiles.git"
        assert ssh.call_args[0][0][-1] == "git@github.com"
        assert "Remote update complete" in result.output

    def test_already_ssh(self, runner: CliRunner, home_with_clone: Path, config) -> None:
        GitRepo(config.dotfiles_path).set_remote_url("git@github.com:sudoflux/dotfiles.git")
        with patch("hostmesh.cli.remote._run") as ssh:
            result = runner.invoke(main, ["remote", "use-ssh", "--home", str(home_with_clone)])
        assert result.exit_code == 0
        assert "already using SSH" in result.output
        ssh.assert_not_called()

    def test_declined_confirmation(self, runner: CliRunner, home_with_clone: Path, config) -> None:
        repo = GitRepo(config.dotfiles_path)
        repo.set_remote_url("https://github.com/sudoflux/dotfiles.git")
        result = runner.invoke(main, ["remote", "use-ssh", "--home", str(home_with_clone)], input="n\n")
        assert result.exit_code == 1
        assert repo.remote_url() == "https://github.com/sudoflux/dotfiles.git"

    def test_missing_github_key(self, runner: CliRunner, hostmesh_home: Path, config, clone_dotfiles) -> None:
        clone_dotfiles(config)
        config_path(hostmesh_home).write_text(yaml.dump(config.model_dump(mode="json")))
        result = runner.invoke(main, ["remote", "use-ssh", "--home", str(hostmesh_home), "--yes"])
        assert result.exit_code == 1
        assert "GitHub SSH key not found" in result.output
