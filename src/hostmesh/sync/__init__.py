"""
Host registry sync -- git-coordinated, lock-free, idempotent.

Every machine owns one record in the shared dotfiles, rebuilds the
combined hosts document from all of them, and publishes the result.
"""

from .models import SyncOptions, SyncPhase, SyncState
from .protocol import SyncProtocol

__all__ = ["SyncOptions", "SyncPhase", "SyncProtocol", "SyncState"]
