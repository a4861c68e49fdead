from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from .errors import BranchNotFoundError, GitCommandError, VerzanctuaryError
from .exclude import ExclusionPolicy
from .sync import MirrorResult, clear_tree, mirror


logger = logging.getLogger(__name__)

BRANCH_PREFIX = "auto-"
DEFAULT_BRANCH = "master"
AUTHOR_NAME = "VerZanctuary System"
AUTHOR_EMAIL = "verzanctuary@tech.robd"

# Settings that must not leak in from the user's git config.
_GIT_CONFIG = (
    "-c", f"user.name={AUTHOR_NAME}",
    "-c", f"user.email={AUTHOR_EMAIL}",
    "-c", "commit.gpgsign=false",
    "-c", "core.autocrlf=false",
    "-c", "core.safecrlf=false",
)
# Variables that would redirect git away from the sanctuary repository.
_GIT_ENV_BLOCKLIST = ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE", "GIT_OBJECT_DIRECTORY", "GIT_CEILING_DIRECTORIES")


def format_timestamp(now: datetime) -> str:
    return f"{now:%Y%m%d-%H%M-%S}-{now.microsecond // 1000:03d}"


def branch_name_for(now: datetime) -> str:
    return f"{BRANCH_PREFIX}{format_timestamp(now)}"


@dataclass(frozen=True)
class SnapshotResult:
    branch: str
    created: bool
    commit: str | None = None
    mirror: MirrorResult | None = None

    @property
    def result(self) -> str:
        return "success" if self.created else "nochange"


@dataclass(frozen=True)
class BranchOutcome:
    branch: str
    deleted: bool
    error: str | None = None


@dataclass(frozen=True)
class CleanupResult:
    kept: tuple[str, ...]
    outcomes: tuple[BranchOutcome, ...]

    @property
    def deleted(self) -> tuple[str, ...]:
        return tuple(o.branch for o in self.outcomes if o.deleted)

    @property
    def failed(self) -> tuple[BranchOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.deleted)


class SnapshotStore:
    """The sanctuary's own git repository.

    The repository lives in `git_dir` and its work tree is the shared browse
    checkout. Each snapshot is one commit on its own `auto-<timestamp>` branch.
    """

    def __init__(
        self,
        *,
        git_dir: Path,
        work_tree: Path,
        now: Callable[[], datetime] = datetime.now,
        git: str = "git",
    ) -> None:
        self.git_dir = Path(git_dir)
        self.work_tree = Path(work_tree)
        self._now = now
        self._git_bin = git
        self._env = {k: v for k, v in os.environ.items() if k not in _GIT_ENV_BLOCKLIST}

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        if shutil.which(self._git_bin) is None:
            raise VerzanctuaryError("git not available")
        cmd = [self._git_bin, f"--git-dir={self.git_dir}", f"--work-tree={self.work_tree}", *_GIT_CONFIG, *args]
        cp = subprocess.run(
            cmd,
            cwd=self.work_tree,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=self._env,
        )
        if check and cp.returncode != 0:
            raise GitCommandError(command=tuple(args), returncode=cp.returncode, stderr=cp.stderr)
        return cp

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return (self.git_dir / "HEAD").exists()

    def initialize(self) -> bool:
        """Create the repository if needed. Returns True when it was created."""

        self.work_tree.mkdir(parents=True, exist_ok=True)
        if self.is_initialized:
            return False
        self.git_dir.mkdir(parents=True, exist_ok=True)
        self._git("-c", f"init.defaultBranch={DEFAULT_BRANCH}", "init", "--quiet")
        logger.info("initialized sanctuary repository at %s", self.git_dir)
        return True

    def has_commits(self) -> bool:
        return self._git("rev-parse", "--verify", "--quiet", "HEAD", check=False).returncode == 0

    def head_commit(self) -> str:
        return self._git("rev-parse", "HEAD").stdout.strip()

    def current_branch(self) -> str | None:
        cp = self._git("symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        if cp.returncode != 0:
            return None
        return cp.stdout.strip() or None

    def branch_exists(self, name: str) -> bool:
        if not self.is_initialized:
            return False
        cp = self._git("rev-parse", "--verify", "--quiet", f"refs/heads/{name}", check=False)
        return cp.returncode == 0

    def list_branches(self) -> list[str]:
        """Snapshot branches, oldest first."""

        if not self.is_initialized:
            return []
        cp = self._git("for-each-ref", "--format=%(refname:short)", f"refs/heads/{BRANCH_PREFIX}*")
        return sorted(line.strip() for line in cp.stdout.splitlines() if line.strip())

    def latest_branch(self) -> str | None:
        branches = self.list_branches()
        return branches[-1] if branches else None

    def new_branch_name(self) -> str:
        """Timestamped name, suffixed `-01`, `-02`, ... when the name is taken."""

        base = branch_name_for(self._now())
        existing = set(self.list_branches())
        name = base
        n = 0
        while name in existing:
            n += 1
            name = f"{base}-{n:02d}"
        return name

    def has_staged_changes(self) -> bool:
        return bool(self._git("status", "--porcelain").stdout.strip())

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def capture(self, source: Path, *, policy: ExclusionPolicy, message: str) -> SnapshotResult:
        """Mirror `source` into the work tree and commit it as a new snapshot branch.

        When the tree matches the current head the existing latest branch is
        returned and nothing is committed.
        """

        self.initialize()
        clear_tree(self.work_tree, keep=(".git",))
        mirrored = mirror(source, self.work_tree, policy=policy)
        self._git("add", "-A", ".")

        branch = self.new_branch_name()
        stamp = branch[len(BRANCH_PREFIX):]

        if not self.has_commits():
            self._git("commit", "--quiet", "--no-verify", "--allow-empty", "-m", f"Initial sanctuary commit - {stamp}")
            self._git("checkout", "--quiet", "-b", branch)
            logger.info("created initial snapshot %s", branch)
            return SnapshotResult(branch=branch, created=True, commit=self.head_commit(), mirror=mirrored)

        if not self.has_staged_changes():
            latest = self.latest_branch()
            if latest is not None:
                logger.info("no changes since %s", latest)
                return SnapshotResult(branch=latest, created=False, commit=None, mirror=mirrored)

        self._git("checkout", "--quiet", "-b", branch)
        self._git("commit", "--quiet", "--no-verify", "--allow-empty", "-m", f"{message} - {stamp}")
        logger.info("created snapshot %s", branch)
        return SnapshotResult(branch=branch, created=True, commit=self.head_commit(), mirror=mirrored)

    def checkout(self, branch: str) -> None:
        """Materialize `branch` exactly in the work tree (`.git` entries are left alone)."""

        if not self.branch_exists(branch):
            raise BranchNotFoundError(branch)
        self._git("checkout", "--quiet", "--force", branch)
        self._git("clean", "--quiet", "-f", "-d", "-x")

    def files_in(self, branch: str) -> list[str]:
        if not self.branch_exists(branch):
            raise BranchNotFoundError(branch)
        out = self._git("ls-tree", "-r", "-z", "--name-only", f"refs/heads/{branch}").stdout
        return sorted(p for p in out.split("\0") if p)

    def delete_branch(self, branch: str) -> None:
        self._git("branch", "-D", branch)

    def cleanup(self, keep: int) -> CleanupResult:
        """Delete all but the `keep` newest snapshot branches.

        Deletion is best effort: a failure is recorded for that branch and the
        rest are still attempted.
        """

        if keep < 0:
            raise ValueError("keep must be >= 0")
        branches = self.list_branches()
        if len(branches) <= keep:
            return CleanupResult(kept=tuple(branches), outcomes=())

        kept = branches[len(branches) - keep:] if keep else []
        doomed = branches[: len(branches) - keep]

        if self.current_branch() in doomed:
            if kept:
                self._git("checkout", "--quiet", "--force", kept[-1])
            else:
                self._git("checkout", "--quiet", "--force", "--detach")

        outcomes: list[BranchOutcome] = []
        for b in doomed:
            try:
                self.delete_branch(b)
            except GitCommandError as e:
                logger.warning("failed to delete branch %s: %s", b, e)
                outcomes.append(BranchOutcome(branch=b, deleted=False, error=str(e)))
                continue
            outcomes.append(BranchOutcome(branch=b, deleted=True))
        return CleanupResult(kept=tuple(kept), outcomes=tuple(outcomes))

    def diff(self, from_branch: str, to_branch: str, *, paths: list[str] | None = None) -> str:
        """Unified diff with rename detection between two snapshot branches."""

        if not (self.branch_exists(from_branch) and self.branch_exists(to_branch)):
            raise BranchNotFoundError(from_branch, to_branch)
        return self._diff_refs(f"refs/heads/{from_branch}", f"refs/heads/{to_branch}", paths=paths)

    def diff_to_head(self, from_branch: str) -> str:
        if not self.branch_exists(from_branch):
            raise BranchNotFoundError(from_branch, "HEAD")
        return self._diff_refs(f"refs/heads/{from_branch}", "HEAD")

    def _diff_refs(self, a: str, b: str, *, paths: list[str] | None = None) -> str:
        args = ["diff", "--no-color", "--no-ext-diff", "-M", a, b]
        if paths:
            args += ["--", *paths]
        return self._git(*args).stdout
