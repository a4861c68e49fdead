from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path

from .paths import SANCTUARY_SUFFIX, WORKING_TMP_NAME, SanctuaryEnv, SanctuaryPaths


GIT_DIRNAME = ".git"


class VisitDecision(enum.Enum):
    DESCEND = "descend"
    SKIP_SUBTREE = "skip_subtree"
    SKIP_ENTRY = "skip_entry"


@dataclass(frozen=True)
class ExclusionPolicy:
    """Decides which paths never cross the sanctuary boundary.

    Directory rules prune whole subtrees. File rules re-check every ancestor
    between the file and the copy root, so an excluded directory is honoured
    even by a walker that did not prune it.
    """

    skip_git: bool
    sanctuary_dir: Path | None = None
    checkout_dir: Path | None = None
    override_roots: tuple[Path, ...] = ()
    skip_reserved_names: bool = True

    @classmethod
    def for_capture(
        cls,
        paths: SanctuaryPaths,
        env: SanctuaryEnv,
        *,
        project_dir: Path,
        host_is_git: bool,
    ) -> "ExclusionPolicy":
        """Policy for project -> sanctuary copies.

        Override roots that contain the project itself are dropped.
        """

        project_dir = Path(project_dir).resolve()
        roots = tuple(r for r in env.override_roots() if r != project_dir and r not in project_dir.parents)
        return cls(
            skip_git=host_is_git,
            sanctuary_dir=paths.sanctuary_dir,
            checkout_dir=paths.browse_dir,
            override_roots=roots,
        )

    @classmethod
    def git_only(cls) -> "ExclusionPolicy":
        """Policy for sanctuary -> working/lab copies: only `.git` is protected, always."""

        return cls(skip_git=True, skip_reserved_names=False)

    def _skip_git_entry(self, path: Path, root: Path | None) -> bool:
        # Nested repositories are never copied; the host flag covers the root `.git` only.
        if path.name != GIT_DIRNAME:
            return False
        return self.skip_git or (root is not None and path.parent != root)

    def skip_directory(self, path: Path, *, root: Path | None = None) -> bool:
        name = path.name
        if self._skip_git_entry(path, root):
            return True
        if self.skip_reserved_names and (name.endswith(SANCTUARY_SUFFIX) or name == WORKING_TMP_NAME):
            return True
        if path == self.sanctuary_dir or path == self.checkout_dir:
            return True
        return any(path == r or r in path.parents for r in self.override_roots)

    def skip_file(self, path: Path, *, root: Path) -> bool:
        if self._skip_git_entry(path, root):
            return True
        for parent in path.parents:
            if parent == root or root not in parent.parents:
                break
            if self.skip_directory(parent, root=root):
                return True
        return False

    def decide(self, path: Path, *, is_dir: bool, root: Path) -> VisitDecision:
        if is_dir:
            return VisitDecision.SKIP_SUBTREE if self.skip_directory(path, root=root) else VisitDecision.DESCEND
        return VisitDecision.SKIP_ENTRY if self.skip_file(path, root=root) else VisitDecision.DESCEND
