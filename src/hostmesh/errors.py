"""
Error taxonomy for hostmesh.

Fatal conditions are exceptions. Everything else degrades: the run
records a Condition, logs a warning, and finishes whatever steps
still make sense.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class Condition(str, Enum):
    """Non-fatal conditions a run can end up in."""

    DISCOVERY_DEGRADED = "discovery_degraded"
    PARSE_SKIPPED = "parse_skipped"
    PULL_FAILED = "pull_failed"
    PUSH_DEFERRED = "push_deferred"
    DISTRIBUTION_PARTIAL_FAILURE = "distribution_partial_failure"


class HostmeshError(Exception):
    """Base class for fatal hostmesh errors."""


class InvalidNameError(HostmeshError):
    """A host name sanitized to nothing and no fallback was configured."""


class RecordParseError(HostmeshError):
    """A host record file could not be parsed."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class RegistryRootMissingError(HostmeshError):
    """The dotfiles working copy that holds the registry does not exist."""


class ConflictUnresolvedError(HostmeshError):
    """Shelved local record changes could not be reapplied after a pull.

    Attributes:
        instructions: Manual steps to resolve the conflict.
    """

    def __init__(self, message: str, instructions: list[str]):
        self.instructions = instructions
        super().__init__(message)


class CredentialMissingError(HostmeshError):
    """Local key material needed for the requested operation is absent."""


class GitError(HostmeshError):
    """A git command that had to succeed did not.

    Attributes:
        cmd: The git arguments that failed.
        stderr: Captured error output.
    """

    def __init__(self, cmd: list[str], stderr: str):
        self.cmd = cmd
        self.stderr = stderr.strip()
        super().__init__(f"git {' '.join(cmd)} failed: {self.stderr}")
