"""
Machine bootstrap: everything a fresh box needs before it can sync.

Steps, in order:
  - Install essential packages with the platform's package manager
  - Ensure Neovim meets the configured minimum version
  - Generate SSH keys and the outgoing SSH client config
  - Clone or update the dotfiles and run their installer
  - Enable the SSH server for incoming connections
  - Optionally set a DNS search domain

Per-platform differences come from ``environment.PLATFORM_PROFILES``;
nothing here branches on distro strings.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from .environment import Environment, OSFamily
from .errors import HostmeshError
from .git import GitRepo
from .models import HostmeshConfig

logger = logging.getLogger("hostmesh.bootstrap")

ESSENTIAL_TOOLS = ["curl", "git", "python3", "ssh"]
NEOVIM_PPA = "ppa:neovim-ppa/unstable"
RESOLV_CONF = Path("/etc/resolv.conf")
DOTFILES_INSTALLER = "install_dotfiles.sh"

SSH_CLIENT_BLOCKS = {
    "github.com": [
        "Host github.com",
        "  User git",
        "  IdentityFile {github_key}",
        "  AddKeysToAgent yes",
    ],
    "*": [
        "Host *",
        "  IdentityFile {identity_file}",
        "  AddKeysToAgent yes",
    ],
}


def _run(
    cmd: list[str], cwd: Optional[Path] = None, input_text: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run a command and capture output."""
    return subprocess.run(
        cmd, capture_output=True, text=True, check=False, input=input_text,
        cwd=str(cwd) if cwd else None,
    )


def _is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def _privileged(cmd: list[str], needs_sudo: bool = True) -> list[str]:
    if needs_sudo and not _is_root() and shutil.which("sudo"):
        return ["sudo", *cmd]
    return cmd


def _check(result: subprocess.CompletedProcess, what: str) -> bool:
    if result.returncode != 0:
        logger.error("%s failed: %s", what, (result.stderr or result.stdout).strip())
        return False
    return True


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------

def missing_tools(tools: list[str] = ESSENTIAL_TOOLS) -> list[str]:
    return [t for t in tools if shutil.which(t) is None]


def install_packages(env: Environment, force: bool = False) -> bool:
    """Install the essential package set for this platform.

    Skipped when every essential tool is already on PATH, unless
    ``force`` is set.

    Returns:
        bool: True if packages are (now) installed.
    """
    profile = env.profile
    if not profile.install_cmd:
        logger.warning(profile.manual_note)
        return False

    if not force and not missing_tools():
        logger.info("Essential packages already installed")
        return True

    if env.os_family == OSFamily.MACOS and shutil.which("brew") is None:
        logger.warning(
            "Homebrew not found. Install it from https://brew.sh and re-run bootstrap."
        )
        return False

    if profile.refresh_cmd:
        _check(_run(_privileged(profile.refresh_cmd, profile.needs_sudo)), "Package index refresh")

    cmd = _privileged(profile.install_cmd + profile.packages, profile.needs_sudo)
    logger.info("Installing essential packages: %s", " ".join(profile.packages))
    if not _check(_run(cmd), "Package install"):
        return False
    logger.info("Essential packages installed")
    return True


# ---------------------------------------------------------------------------
# Neovim
# ---------------------------------------------------------------------------

def parse_version(text: str) -> Optional[tuple[int, ...]]:
    """Extract a dotted version from ``nvim --version``-style text."""
    match = re.search(r"v?(\d+)\.(\d+)(?:\.(\d+))?", text)
    if not match:
        return None
    return tuple(int(part or 0) for part in match.groups())


def neovim_version() -> Optional[tuple[int, ...]]:
    if shutil.which("nvim") is None:
        return None
    result = _run(["nvim", "--version"])
    if result.returncode != 0 or not result.stdout:
        return None
    return parse_version(result.stdout.splitlines()[0])


def install_neovim(env: Environment) -> bool:
    """Install or upgrade Neovim from the unstable PPA (Debian family)."""
    if env.os_family != OSFamily.DEBIAN:
        logger.warning("Automatic Neovim upgrade only implemented for Debian/Ubuntu")
        return False

    steps = [
        ["apt-get", "update", "-qq"],
        ["apt-get", "install", "-y", "software-properties-common"],
        ["add-apt-repository", "-y", NEOVIM_PPA],
        ["apt-get", "update", "-qq"],
        ["apt-get", "install", "-y", "neovim"],
    ]
    for cmd in steps:
        if not _check(_run(_privileged(cmd)), " ".join(cmd[:2])):
            return False
    logger.info("Neovim now at %s", ".".join(map(str, neovim_version() or ())) or "unknown")
    return True


def ensure_neovim(env: Environment, minimum: str = "0.9.0") -> bool:
    """Make sure Neovim is installed and at least ``minimum``."""
    wanted = parse_version(minimum) or (0, 9, 0)
    current = neovim_version()
    if current is None:
        logger.info("Neovim not found, installing")
        return install_neovim(env)
    if current < wanted:
        logger.info(
            "Detected Neovim %s < %s, upgrading",
            ".".join(map(str, current)), minimum,
        )
        return install_neovim(env)
    logger.debug("Neovim %s is OK", ".".join(map(str, current)))
    return True


# ---------------------------------------------------------------------------
# SSH keys & client config
# ---------------------------------------------------------------------------

def generate_key(path: Path, comment: Optional[str] = None) -> bool:
    """Create an ed25519 key pair at ``path`` unless one exists.

    Returns:
        bool: True if a new key was generated.
    """
    if path.exists():
        return False
    cmd = ["ssh-keygen", "-t", "ed25519", "-f", str(path), "-N", ""]
    if comment:
        cmd += ["-C", comment]
    if not _check(_run(cmd), f"ssh-keygen for {path.name}"):
        raise HostmeshError(f"Could not generate SSH key {path}")
    logger.info("Generated SSH key %s", path)
    return True


def _has_host_block(lines: list[str], pattern: str) -> bool:
    for line in lines:
        parts = line.split()
        if len(parts) >= 2 and parts[0].lower() == "host" and pattern in parts[1:]:
            return True
    return False


def write_client_config(config: HostmeshConfig) -> bool:
    """Append the github.com and catch-all Host blocks if absent.

    Returns:
        bool: True if the SSH config changed.
    """
    path = config.ssh_config_path
    text = path.read_text(encoding="utf-8") if path.exists() else ""
    lines = text.splitlines()

    additions: list[str] = []
    values = {"github_key": _home_ref(config.github_key), "identity_file": config.identity_file}
    for pattern, block in SSH_CLIENT_BLOCKS.items():
        if _has_host_block(lines, pattern):
            continue
        if additions or lines:
            additions.append("")
        additions += [line.format(**values) for line in block]

    if additions:
        if text and not text.endswith("\n"):
            text += "\n"
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        path.write_text(text + "\n".join(additions) + "\n", encoding="utf-8")
    if path.exists():
        path.chmod(0o600)
    return bool(additions)


def _home_ref(path: Path) -> str:
    try:
        return "~/" + str(path.expanduser().relative_to(Path.home()))
    except ValueError:
        return str(path)


def setup_ssh_keys(config: HostmeshConfig, env: Environment) -> Optional[str]:
    """Generate the GitHub and default keys and the client config.

    Returns:
        The GitHub public key if it was just generated (to add to
        GitHub), else None.
    """
    ssh_dir = config.ssh_dir.expanduser()
    ssh_dir.mkdir(parents=True, exist_ok=True)
    ssh_dir.chmod(0o700)

    github_key = config.github_key.expanduser()
    new_github_pub = None
    if generate_key(github_key, comment=f"{env.user}@{env.hostname}"):
        new_github_pub = Path(f"{github_key}.pub").read_text(encoding="utf-8").strip()

    generate_key(config.identity_path)
    write_client_config(config)
    logger.info("SSH keys and config ready")
    return new_github_pub


# ---------------------------------------------------------------------------
# Dotfiles
# ---------------------------------------------------------------------------

def setup_dotfiles(config: HostmeshConfig, run_installer: bool = True) -> GitRepo:
    """Clone the dotfiles, or bring an existing checkout up to date.

    An existing checkout with local changes is fetched but not reset,
    so unpublished host records are never thrown away.

    Raises:
        HostmeshError: If the target exists but is not a git checkout,
            or the clone fails.
    """
    path = config.dotfiles_path
    repo = GitRepo(path)

    if repo.is_repo():
        logger.info("Updating dotfiles in %s", path)
        if not _check(repo.fetch("origin"), "git fetch"):
            logger.warning("Could not fetch dotfiles; keeping local checkout")
        elif repo.has_changes():
            logger.warning(
                "Dotfiles have local changes; not resetting to origin/%s", config.branch,
            )
        else:
            repo.reset_hard(f"origin/{config.branch}")
    else:
        if path.exists() and any(path.iterdir()):
            raise HostmeshError(
                f"{path} exists but is not a git checkout; move it aside and re-run"
            )
        logger.info("Cloning %s into %s", config.repo_url, path)
        repo = GitRepo.clone(config.repo_url, path, branch=config.branch)

    if run_installer:
        run_dotfiles_installer(path)
    return repo


def run_dotfiles_installer(dotfiles: Path) -> bool:
    installer = dotfiles / DOTFILES_INSTALLER
    if not installer.is_file():
        logger.debug("No %s in dotfiles", DOTFILES_INSTALLER)
        return False
    installer.chmod(installer.stat().st_mode | 0o111)
    logger.info("Running dotfiles installer")
    return _check(_run([str(installer)], cwd=dotfiles), DOTFILES_INSTALLER)


# ---------------------------------------------------------------------------
# SSH server & DNS
# ---------------------------------------------------------------------------

def enable_sshd(env: Environment) -> bool:
    """Enable and start the SSH server for incoming connections."""
    if env.os_family == OSFamily.MACOS:
        ok = _check(_run(_privileged(["systemsetup", "-setremotelogin", "on"])), "systemsetup")
        if ok:
            logger.info("Remote Login (SSH) enabled")
        return ok

    service = env.profile.ssh_service
    if not service:
        logger.warning("Don't know how to enable the SSH server on %s", env.distro)
        return False
    ok = _check(_run(_privileged(["systemctl", "enable", "--now", service])), "systemctl enable")
    if ok:
        logger.info("SSH server active")
    return ok


def default_interface() -> Optional[str]:
    result = _run(["ip", "-o", "-4", "route", "show", "to", "default"])
    if result.returncode != 0:
        return None
    for line in result.stdout.splitlines():
        parts = line.split()
        if "dev" in parts and parts.index("dev") + 1 < len(parts):
            return parts[parts.index("dev") + 1]
    return None


def _resolved_active() -> bool:
    if shutil.which("resolvectl") is None or shutil.which("systemctl") is None:
        return False
    return _run(["systemctl", "is-active", "--quiet", "systemd-resolved"]).returncode == 0


def update_search_line(text: str, domain: str) -> str:
    """Set the ``search`` line of a resolv.conf body to ``domain``."""
    lines = text.splitlines()
    replaced = False
    for i, line in enumerate(lines):
        if line.startswith("search"):
            lines[i] = f"search {domain}"
            replaced = True
    if not replaced:
        lines.append(f"search {domain}")
    return "\n".join(lines) + "\n"


def configure_dns_search(domain: str, resolv_conf: Path = RESOLV_CONF) -> bool:
    """Configure the DNS search domain.

    Uses systemd-resolved on the default interface when it is running,
    otherwise edits ``resolv_conf`` after backing it up.
    """
    logger.info("Configuring DNS search domain: %s", domain)

    if _resolved_active():
        iface = default_interface()
        if iface:
            ok = _check(_run(_privileged(["resolvectl", "domain", iface, domain])), "resolvectl")
            if ok:
                logger.info("systemd-resolved domain set on %s", iface)
            return ok

    current = resolv_conf.read_text(encoding="utf-8") if resolv_conf.exists() else ""
    updated = update_search_line(current, domain)
    backup = resolv_conf.with_name(resolv_conf.name + ".bak")

    if os.access(resolv_conf.parent, os.W_OK) and (
        not resolv_conf.exists() or os.access(resolv_conf, os.W_OK)
    ):
        if resolv_conf.exists():
            shutil.copy2(resolv_conf, backup)
        resolv_conf.write_text(updated, encoding="utf-8")
    else:
        if resolv_conf.exists():
            _check(_run(_privileged(["cp", str(resolv_conf), str(backup)])), "resolv.conf backup")
        if not _check(
            _run(_privileged(["tee", str(resolv_conf)]), input_text=updated), "resolv.conf update",
        ):
            return False
    logger.info("%s updated", resolv_conf)
    return True


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def run_bootstrap(
    config: HostmeshConfig,
    env: Environment,
    force: bool = False,
    search_domain: Optional[str] = None,
) -> dict[str, bool]:
    """Run every bootstrap step.

    Package, editor, and service steps are best effort. Key generation
    and the dotfiles checkout must succeed, since sync depends on them.

    Returns:
        dict mapping step name to success.
    """
    results: dict[str, bool] = {}
    results["packages"] = install_packages(env, force=force)
    results["neovim"] = ensure_neovim(env, config.min_neovim)
    setup_ssh_keys(config, env)
    results["ssh_keys"] = True
    setup_dotfiles(config)
    results["dotfiles"] = True
    results["sshd"] = enable_sshd(env)
    if search_domain:
        results["dns"] = configure_dns_search(search_domain)
    return results
