from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .lock import LockInfo


class VerzanctuaryError(Exception):
    """Base exception for sanctuary operations."""


class ProjectRootError(VerzanctuaryError):
    """Raised when no project root can be determined (e.g. no git repository found)."""


@dataclass(eq=False)
class LockContentionError(VerzanctuaryError):
    """Raised when another operation holds the sanctuary lock."""

    operation: str
    holder: LockInfo | None = None

    def __str__(self) -> str:
        held = ""
        if self.holder is not None:
            held = f" (held by process {self.holder.process_id} since {self.holder.timestamp} for '{self.holder.operation}')"
        return (
            f"Cannot acquire lock for operation '{self.operation}'{held}. "
            "Another sanctuary operation may be running. "
            "If you are sure it is not, run: verz lock unlock --force"
        )


@dataclass(eq=False)
class StaleLockError(VerzanctuaryError):
    """Raised when a stale lock file cannot be removed."""

    path: Path
    attempts: int

    def __str__(self) -> str:
        return f"Failed to remove stale lock {self.path} after {self.attempts} attempts"


@dataclass(eq=False)
class BranchNotFoundError(VerzanctuaryError):
    from_branch: str
    to_branch: str | None = None

    def __str__(self) -> str:
        if self.to_branch is None:
            return f"Sanctuary branch not found: {self.from_branch}"
        return f"Branch not found: {self.from_branch} or {self.to_branch}"


@dataclass(eq=False)
class GitCommandError(VerzanctuaryError):
    """Raised when a git subprocess exits non-zero."""

    command: tuple[str, ...]
    returncode: int
    stderr: str = ""

    def __str__(self) -> str:
        detail = f": {self.stderr.strip()}" if self.stderr.strip() else ""
        return f"git {' '.join(self.command)} failed with exit code {self.returncode}{detail}"


@dataclass(eq=False)
class SyncError(VerzanctuaryError):
    """Raised when copying a file between trees fails part way through."""

    path: Path
    message: str

    def __str__(self) -> str:
        return f"Failed to copy {self.path}: {self.message}"


class HookInstallError(VerzanctuaryError):
    """Raised when the browse workspace's hooks directory cannot be created."""
