"""
Sync data models -- options and per-run state for the sync protocol.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..errors import Condition
from ..models import DistributionReport


class SyncPhase(str, Enum):
    """Steps of one sync run, in order."""

    START = "start"
    PULL = "pull"
    PULL_OK = "pull_ok"
    PULL_CONFLICT = "pull_conflict"
    REGISTER = "register"
    REBUILD = "rebuild"
    INSTALL_LOCAL = "install_local"
    COMMIT = "commit"
    PUSH_OK = "push_ok"
    PUSH_DEFERRED = "push_deferred"
    DISTRIBUTE = "distribute"
    END = "end"


class SyncOptions(BaseModel):
    """What the caller asked a sync run to do."""

    update_only: bool = False
    skip_pull: bool = False
    force: bool = False
    distribute_keys: bool = False


class SyncState(BaseModel):
    """What happened during one sync run. Never persisted.

    Attributes:
        phase: Last phase entered.
        canonical_name: This machine's registry name (if registered).
        had_local_changes: Record files were modified before pulling.
        shelved: Those changes were stashed for the pull.
        pull_ok: The pull succeeded.
        pull_skipped: Pulling was not attempted.
        registered: This machine's record was (re)written.
        record_changed: Registration altered the record file.
        registry_changed: The rendered hosts document changed.
        include_changed: ~/.ssh/config was modified.
        committed: A commit was created.
        pushed: The commit reached the remote.
        host_count: Hosts in the rebuilt registry.
        conditions: Degraded conditions met along the way.
        distribution: Key distribution outcome, when requested.
    """

    phase: SyncPhase = SyncPhase.START
    canonical_name: Optional[str] = None
    had_local_changes: bool = False
    shelved: bool = False
    pull_ok: bool = False
    pull_skipped: bool = False
    registered: bool = False
    record_changed: bool = False
    registry_changed: bool = False
    include_changed: bool = False
    committed: bool = False
    pushed: bool = False
    host_count: int = 0
    conditions: list[Condition] = Field(default_factory=list)
    distribution: Optional[DistributionReport] = None

    def note(self, condition: Condition) -> None:
        if condition not in self.conditions:
            self.conditions.append(condition)
