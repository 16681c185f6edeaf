"""
Thin wrapper over the ``git`` CLI for the dotfiles working copy.

Only the handful of operations the sync protocol and bootstrap need.
Each method returns plain values; methods that must succeed raise
GitError, the rest report failure through their return value.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Optional

from .errors import GitError

logger = logging.getLogger("hostmesh.git")

_HTTPS_REMOTE = re.compile(r"^https?://(?:[^@/]+@)?([^/]+)/(.+?)(?:\.git)?/?$")


def _run(
    cmd: list[str], cwd: Optional[Path] = None, env: Optional[dict[str, str]] = None,
) -> subprocess.CompletedProcess:
    """Run a command and capture output."""
    return subprocess.run(
        cmd, capture_output=True, text=True, check=False,
        cwd=str(cwd) if cwd else None, env=env,
    )


def is_ssh_url(url: str) -> bool:
    """True for ``git@host:path`` and ``ssh://`` remotes."""
    return url.startswith("ssh://") or bool(re.match(r"^[\w.-]+@[\w.-]+:", url))


def to_ssh_url(url: str) -> str:
    """Convert an HTTPS remote to its SSH form.

    ``https://github.com/owner/repo(.git)`` becomes
    ``git@github.com:owner/repo.git``. SSH remotes come back unchanged.

    Raises:
        ValueError: If the URL is neither SSH nor HTTPS.
    """
    if is_ssh_url(url):
        return url
    match = _HTTPS_REMOTE.match(url.strip())
    if not match:
        raise ValueError(f"Not an HTTPS or SSH remote: {url}")
    host, path = match.groups()
    return f"git@{host}:{path}.git"


class GitRepo:
    """A git working copy on disk."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def _git(
        self, *args: str, check: bool = False, env: Optional[dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        result = _run(["git", *args], cwd=self.path, env=env)
        logger.debug("git %s -> %d", " ".join(args), result.returncode)
        if check and result.returncode != 0:
            raise GitError(list(args), result.stderr or result.stdout)
        return result

    @classmethod
    def clone(cls, url: str, dest: Path, branch: Optional[str] = None) -> "GitRepo":
        """Clone ``url`` into ``dest``.

        Raises:
            GitError: If the clone fails.
        """
        cmd = ["git", "clone"]
        if branch:
            cmd += ["-b", branch]
        cmd += [url, str(dest)]
        result = _run(cmd)
        if result.returncode != 0:
            raise GitError(cmd[1:], result.stderr)
        return cls(dest)

    def is_repo(self) -> bool:
        return (self.path / ".git").exists()

    def _rel(self, path: Path) -> str:
        path = Path(path)
        try:
            return str(path.relative_to(self.path))
        except ValueError:
            return str(path)

    def status(self, *paths: Path) -> list[str]:
        """Porcelain status lines, optionally limited to ``paths``."""
        args = ["status", "--porcelain", "--untracked-files=all"]
        if paths:
            args += ["--", *(self._rel(p) for p in paths)]
        result = self._git(*args, check=True)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def has_changes(self, *paths: Path) -> bool:
        return bool(self.status(*paths))

    def is_tracked(self, path: Path) -> bool:
        result = self._git("ls-files", "--error-unmatch", "--", self._rel(path))
        return result.returncode == 0

    def discard(self, path: Path) -> None:
        """Throw away local edits to ``path`` (tracked or untracked)."""
        if self.is_tracked(path):
            self._git("checkout", "HEAD", "--", self._rel(path), check=True)
        elif Path(path).exists():
            Path(path).unlink()

    def _stash_ref(self) -> str:
        return self._git("rev-parse", "-q", "--verify", "refs/stash").stdout.strip()

    def stash_push(self, message: str, *paths: Path) -> bool:
        """Shelve local changes to ``paths``, untracked files included.

        Returns:
            bool: True if a stash entry was created.

        Raises:
            GitError: If git refuses to stash.
        """
        before = self._stash_ref()
        args = ["stash", "push", "--include-untracked", "-m", message]
        if paths:
            args += ["--", *(self._rel(p) for p in paths)]
        self._git(*args, check=True)
        return self._stash_ref() != before

    def stash_pop(self) -> subprocess.CompletedProcess:
        """Reapply the newest stash entry; it is kept if that fails."""
        return self._git("stash", "pop")

    def has_remote(self, name: str = "origin") -> bool:
        return self.remote_url(name) is not None

    def remote_url(self, name: str = "origin") -> Optional[str]:
        result = self._git("remote", "get-url", name)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def set_remote_url(self, url: str, name: str = "origin") -> None:
        self._git("remote", "set-url", name, url, check=True)

    def fetch(self, remote: str = "origin") -> subprocess.CompletedProcess:
        return self._git("fetch", remote)

    def reset_hard(self, ref: str) -> None:
        self._git("reset", "--hard", ref, check=True)

    def pull(self, remote: str = "origin", branch: str = "main") -> subprocess.CompletedProcess:
        """Pull with rebase so unpushed local commits stay on top."""
        return self._git("pull", "--rebase", remote, branch)

    def rebase_in_progress(self) -> bool:
        git_dir = self.path / ".git"
        return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()

    def abort_rebase(self) -> None:
        self._git("rebase", "--abort")

    def unmerged(self) -> list[Path]:
        """Paths left conflicted by an interrupted merge or rebase."""
        result = self._git("diff", "--name-only", "--diff-filter=U", check=True)
        names = dict.fromkeys(line for line in result.stdout.splitlines() if line.strip())
        return [self.path / name for name in names]

    def continue_rebase(self) -> subprocess.CompletedProcess:
        # keep the replayed commit message without opening an editor
        return self._git("rebase", "--continue", env={**os.environ, "GIT_EDITOR": "true"})

    def skip_rebase(self) -> subprocess.CompletedProcess:
        return self._git("rebase", "--skip")

    def add(self, *paths: Path) -> None:
        self._git("add", "--all", "--", *(self._rel(p) for p in paths), check=True)

    def staged(self, *paths: Path) -> list[str]:
        """Staged file names, optionally limited to ``paths``."""
        args = ["diff", "--cached", "--name-only"]
        if paths:
            args += ["--", *(self._rel(p) for p in paths)]
        result = self._git(*args, check=True)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def commit(self, message: str, *paths: Path) -> None:
        """Commit what is staged for ``paths`` only.

        Raises:
            GitError: If the commit fails.
        """
        args = ["commit", "-m", message]
        if paths:
            args += ["--", *(self._rel(p) for p in paths)]
        self._git(*args, check=True)

    def push(self, remote: str = "origin", branch: str = "main") -> subprocess.CompletedProcess:
        return self._git("push", remote, f"HEAD:{branch}")

    def ahead_of(self, remote: str = "origin", branch: str = "main") -> int:
        """Commits on HEAD that ``remote/branch`` does not have yet."""
        result = self._git("rev-list", "--count", f"{remote}/{branch}..HEAD")
        return int(result.stdout.strip()) if result.returncode == 0 else 0

    def commit_count(self) -> int:
        result = self._git("rev-list", "--count", "HEAD")
        return int(result.stdout.strip()) if result.returncode == 0 else 0
