"""Shared test fixtures for hostmesh."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from hostmesh.environment import Environment, OSFamily
from hostmesh.models import HostmeshConfig


def git(*args: str, cwd: Path) -> str:
    """Run git in ``cwd`` and return stdout; fail the test on error."""
    result = subprocess.run(
        ["git", *args], cwd=str(cwd), capture_output=True, text=True, check=False,
    )
    assert result.returncode == 0, f"git {' '.join(args)} failed: {result.stderr}"
    return result.stdout


def _identify(repo: Path) -> None:
    git("config", "user.name", "Test User", cwd=repo)
    git("config", "user.email", "test@example.com", cwd=repo)
    git("config", "commit.gpgsign", "false", cwd=repo)


@pytest.fixture
def hostmesh_home(tmp_path: Path) -> Path:
    """Provide a temporary hostmesh home directory."""
    home = tmp_path / ".hostmesh"
    home.mkdir()
    return home


@pytest.fixture
def make_config(tmp_path: Path):
    """Build a HostmeshConfig whose every path lives under tmp_path."""

    def _make(machine: str = "machine", **overrides) -> HostmeshConfig:
        base = tmp_path / machine
        ssh_dir = base / ".ssh"
        values = dict(
            dotfiles_dir=base / "dotfiles",
            ssh_dir=ssh_dir,
            ssh_config=ssh_dir / "config",
            identity_file=str(ssh_dir / "id_ed25519"),
            github_key=ssh_dir / "github_ed25519",
        )
        values.update(overrides)
        return HostmeshConfig(**values)

    return _make


@pytest.fixture
def config(make_config) -> HostmeshConfig:
    return make_config()


@pytest.fixture
def make_env(tmp_path: Path):
    """Build an Environment for a given hostname."""

    def _make(hostname: str = "Test-Box", user: str = "tester",
              family: OSFamily = OSFamily.DEBIAN) -> Environment:
        return Environment(
            os_family=family,
            distro="ubuntu" if family == OSFamily.DEBIAN else family.value,
            hostname=hostname,
            user=user,
            home=tmp_path,
        )

    return _make


@pytest.fixture
def environment(make_env) -> Environment:
    return make_env()


@pytest.fixture
def remote_repo(tmp_path: Path) -> Path:
    """A bare repository on branch main with one initial commit."""
    remote = tmp_path / "remote.git"
    seed = tmp_path / "seed"
    git("init", "--bare", str(remote), cwd=tmp_path)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=remote)

    git("init", str(seed), cwd=tmp_path)
    _identify(seed)
    git("checkout", "-b", "main", cwd=seed)
    (seed / "README.md").write_text("# dotfiles\n")
    git("add", "README.md", cwd=seed)
    git("commit", "-m", "Initial commit", cwd=seed)
    git("remote", "add", "origin", str(remote), cwd=seed)
    git("push", "origin", "main", cwd=seed)
    return remote


@pytest.fixture
def clone_dotfiles(remote_repo: Path):
    """Clone the shared remote into a config's dotfiles directory."""

    def _clone(config: HostmeshConfig) -> Path:
        dest = config.dotfiles_path
        dest.parent.mkdir(parents=True, exist_ok=True)
        git("clone", "-b", "main", str(remote_repo), str(dest), cwd=dest.parent)
        _identify(dest)
        return dest

    return _clone
