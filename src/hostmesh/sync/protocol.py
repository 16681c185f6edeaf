"""
Sync protocol -- converge every machine on one hosts registry.

The dotfiles git repository is the coordination medium. There is no
lock: each machine pulls, rewrites only its own record, rebuilds the
shared document, commits, and pushes. Races between machines are
absorbed by the rebase on the next pull and by the merge being
deterministic. A rebase conflict on the rendered document is settled by
regenerating it, and commits a failed push left behind go out with the
next run.

    START -> PULL -> (PULL_OK | PULL_CONFLICT) -> REGISTER -> REBUILD
          -> INSTALL_LOCAL -> COMMIT -> (PUSH_OK | PUSH_DEFERRED) -> END

Only a missing dotfiles checkout, a conflict on anything but the
rendered document, or missing key material for a requested distribution
stop a run. Everything else is logged, recorded on the SyncState, and
skipped past.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional

from ..distribute import distribute, load_public_key, public_key_path
from ..environment import Environment
from ..errors import (
    Condition,
    ConflictUnresolvedError,
    InvalidNameError,
    RegistryRootMissingError,
)
from ..git import GitRepo, is_ssh_url
from ..models import HostmeshConfig, Registry
from ..records import (
    build_record,
    discover_local_addresses,
    record_path,
    sanitize_name,
    write_record,
)
from ..registry import rebuild
from ..ssh_config import install_include
from .models import SyncOptions, SyncPhase, SyncState

logger = logging.getLogger("hostmesh.sync.protocol")

REMOTE = "origin"
SHELVE_MESSAGE = "hostmesh: shelved local host records"
MAX_REBASE_STEPS = 100


class SyncProtocol:
    """One machine's side of the registry synchronization.

    Args:
        config: hostmesh configuration.
        environment: Description of the local machine.
        repo: The dotfiles working copy. Defaults to ``config.dotfiles_dir``.
        discover: Address discovery function, for registration.
    """

    def __init__(
        self,
        config: HostmeshConfig,
        environment: Environment,
        repo: Optional[GitRepo] = None,
        discover: Callable[[], list[str]] = discover_local_addresses,
    ):
        self.config = config
        self.env = environment
        self.repo = repo or GitRepo(config.dotfiles_path)
        self._discover = discover

    @property
    def hosts_dir(self) -> Path:
        return self.config.hosts_dir

    @property
    def hosts_file(self) -> Path:
        return self.config.hosts_file

    def run(self, options: Optional[SyncOptions] = None) -> SyncState:
        """Execute one full sync.

        Args:
            options: What to do. Defaults to a full register-and-sync.

        Returns:
            SyncState describing the run.

        Raises:
            RegistryRootMissingError: The dotfiles checkout does not exist.
            ConflictUnresolvedError: Shelved changes could not be reapplied.
            CredentialMissingError: Distribution requested without a public key.
        """
        options = options or SyncOptions()
        state = SyncState()

        self._check_root()
        public_key = None
        if options.distribute_keys:
            public_key = load_public_key(self.config.identity_file)

        self._pull(state, options)
        if options.update_only:
            logger.info("Update-only mode: not registering this host")
            state.canonical_name = self._local_name()
        else:
            self._register(state)
        registry = self._rebuild(state)
        self._install_local(state, options)
        self._commit(state, options)

        if public_key is not None:
            self._distribute(state, registry, public_key)

        state.phase = SyncPhase.END
        return state

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _check_root(self) -> None:
        root = self.config.dotfiles_path
        if not root.is_dir():
            raise RegistryRootMissingError(
                f"Dotfiles directory not found at {root}. "
                "Run 'hostmesh bootstrap' first to set up your dotfiles."
            )
        self.hosts_dir.mkdir(parents=True, exist_ok=True)

    def _pull(self, state: SyncState, options: SyncOptions) -> None:
        state.phase = SyncPhase.PULL

        if options.skip_pull:
            logger.info("Skipping pull")
            state.pull_skipped = True
            return
        if not self.repo.is_repo() or not self.repo.has_remote(REMOTE):
            logger.warning("No '%s' remote for %s; using local registry only", REMOTE, self.repo.path)
            state.note(Condition.PULL_FAILED)
            return

        # The rendered document is regenerated below, never shelved.
        if self.repo.has_changes(self.hosts_file):
            self.repo.discard(self.hosts_file)

        if self.repo.has_changes(self.hosts_dir):
            state.had_local_changes = True
            logger.info("Shelving local host record changes before pull")
            state.shelved = self.repo.stash_push(SHELVE_MESSAGE, self.hosts_dir)

        result = self.repo.pull(REMOTE, self.config.branch)
        if result.returncode != 0 and self.repo.rebase_in_progress():
            result = self._settle_rebase(state, result)
        if result.returncode == 0:
            state.pull_ok = True
            state.phase = SyncPhase.PULL_OK
            logger.info("Pulled latest hosts from %s/%s", REMOTE, self.config.branch)
        else:
            if self.repo.rebase_in_progress():
                self.repo.abort_rebase()
            logger.warning(
                "Could not pull from %s: %s; continuing with local registry",
                REMOTE, (result.stderr or result.stdout).strip(),
            )
            state.note(Condition.PULL_FAILED)

        if state.shelved:
            self._reapply(state)

    def _settle_rebase(
        self, state: SyncState, result: subprocess.CompletedProcess,
    ) -> subprocess.CompletedProcess:
        """Carry an interrupted pull through conflicts on the hosts document.

        The document is derived from ``hosts.d``, so a conflict on it is
        settled by regenerating it from the merged records. A conflict on
        any other path aborts the rebase and halts the run.
        """
        for _ in range(MAX_REBASE_STEPS):
            if not self.repo.rebase_in_progress():
                return result
            conflicts = self.repo.unmerged()
            if not conflicts:
                if self.repo.staged():
                    return result
                # regenerating left nothing of this commit to replay
                result = self.repo.skip_rebase()
                continue

            others = [p for p in conflicts if p != self.hosts_file]
            if others:
                self.repo.abort_rebase()
                if state.shelved:
                    self._reapply(state)
                self._halt_on_conflict(state, others)

            logger.info("Regenerating %s to settle a pull conflict", self.hosts_file)
            rebuild(self.hosts_dir, self.hosts_file)
            self.repo.add(self.hosts_file)
            result = self.repo.continue_rebase()
        return result

    def _halt_on_conflict(self, state: SyncState, paths: list[Path]) -> None:
        state.phase = SyncPhase.PULL_CONFLICT
        root = self.config.dotfiles_path
        names = ", ".join(str(p.relative_to(root)) for p in paths)
        raise ConflictUnresolvedError(
            f"Pulled changes conflict with local commits on {names}",
            instructions=[
                f"cd {root}",
                f"git pull --rebase {REMOTE} {self.config.branch}",
                "edit the conflicted files, then 'git add' them",
                "git rebase --continue",
                "hostmesh sync                # rebuild and publish",
            ],
        )

    def _reapply(self, state: SyncState) -> None:
        result = self.repo.stash_pop()
        if result.returncode == 0:
            logger.info("Reapplied local host record changes")
            return

        state.phase = SyncPhase.PULL_CONFLICT
        root = self.config.dotfiles_path
        raise ConflictUnresolvedError(
            "Local host record changes conflict with the pulled registry",
            instructions=[
                f"cd {root}",
                "git status                   # see which host records conflict",
                "edit the files under .ssh/hosts.d/ to resolve the conflict",
                "git stash drop               # once your changes are restored",
                "hostmesh sync --skip-pull    # rebuild and publish",
            ],
        )

    def _local_name(self) -> Optional[str]:
        try:
            return sanitize_name(self.env.hostname, self.config.fallback_name)
        except InvalidNameError:
            return None

    def _register(self, state: SyncState) -> None:
        state.phase = SyncPhase.REGISTER
        logger.info("Registering this host in your dotfiles")

        addresses = self._discover()
        if not addresses:
            state.note(Condition.DISCOVERY_DEGRADED)

        record = build_record(
            self.env.hostname,
            self.config.login_user or self.env.user,
            self.config.identity_file,
            addresses,
            fallback=self.config.fallback_name,
        )
        path = record_path(self.hosts_dir, record.canonical_name)
        before = path.read_text(encoding="utf-8") if path.exists() else None
        write_record(record, self.hosts_dir)

        state.canonical_name = record.canonical_name
        state.registered = True
        state.record_changed = path.read_text(encoding="utf-8") != before

    def _rebuild(self, state: SyncState) -> Registry:
        state.phase = SyncPhase.REBUILD
        registry, changed = rebuild(self.hosts_dir, self.hosts_file)
        if registry.skipped:
            state.note(Condition.PARSE_SKIPPED)
        state.registry_changed = changed
        state.host_count = len(registry)
        return registry

    def _install_local(self, state: SyncState, options: SyncOptions) -> None:
        state.phase = SyncPhase.INSTALL_LOCAL
        state.include_changed = install_include(
            self.config.ssh_config_path, self.hosts_file, force=options.force,
        )

    def _commit(self, state: SyncState, options: SyncOptions) -> None:
        state.phase = SyncPhase.COMMIT
        if not self.repo.is_repo():
            logger.warning("%s is not a git repository; nothing committed", self.repo.path)
            return

        paths = [self.hosts_dir, self.hosts_file]
        changed = [p for p in paths if self.repo.has_changes(p)]
        if changed:
            self.repo.add(*changed)
        staged = self.repo.staged(*paths)
        if staged:
            if options.update_only or not state.canonical_name:
                message = "Rebuild SSH hosts"
            else:
                message = f"Update SSH hosts: add/update {state.canonical_name}"
            self.repo.commit(message, *staged)
            state.committed = True
            logger.info("Committed %d file(s): %s", len(staged), message)
        else:
            logger.info("No changes to commit")

        if state.committed:
            self._push(state)
            return
        pending = self.repo.ahead_of(REMOTE, self.config.branch)
        if pending:
            logger.info("Publishing %d earlier unpushed commit(s)", pending)
            self._push(state)

    def _push(self, state: SyncState) -> None:
        root = self.config.dotfiles_path
        url = self.repo.remote_url(REMOTE)
        if url is None:
            logger.warning("No remote configured. Changes committed locally only.")
            state.phase = SyncPhase.PUSH_DEFERRED
            state.note(Condition.PUSH_DEFERRED)
            return

        result = self.repo.push(REMOTE, self.config.branch)
        if result.returncode == 0:
            state.pushed = True
            state.phase = SyncPhase.PUSH_OK
            logger.info("Changes pushed to %s", REMOTE)
            return

        state.phase = SyncPhase.PUSH_DEFERRED
        state.note(Condition.PUSH_DEFERRED)
        logger.warning(
            "Could not push: %s. Changes committed locally; run 'cd %s && git push' later.",
            (result.stderr or result.stdout).strip(), root,
        )
        if not is_ssh_url(url):
            logger.warning("Remote uses HTTPS; 'hostmesh remote use-ssh' switches it to SSH.")

    def _distribute(self, state: SyncState, registry: Registry, public_key: str) -> None:
        state.phase = SyncPhase.DISTRIBUTE
        report = distribute(
            registry,
            public_key,
            local_name=state.canonical_name,
            bridge_networks=self.config.bridge_networks,
            key_path=public_key_path(self.config.identity_file),
        )
        if not report.ok:
            state.note(Condition.DISTRIBUTION_PARTIAL_FAILURE)
        state.distribution = report
