from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator

from .errors import SyncError
from .exclude import ExclusionPolicy, VisitDecision


logger = logging.getLogger(__name__)

Decider = Callable[[Path, bool], VisitDecision]


@dataclass(frozen=True)
class WalkEntry:
    path: Path
    rel: str
    is_dir: bool


@dataclass(frozen=True)
class MirrorResult:
    source: Path
    dest: Path
    copied: tuple[str, ...]
    skipped: tuple[str, ...]


@dataclass(frozen=True)
class FileCopyResult:
    rel: str
    copied: bool
    reason: str | None = None


def walk_tree(root: Path, decide: Decider) -> Iterator[WalkEntry]:
    """Depth-first walk of `root` yielding every entry `decide` lets through.

    `decide(path, is_dir)` returns DESCEND to visit, SKIP_SUBTREE to prune a
    directory, or SKIP_ENTRY to drop a single entry. Symlinks are reported as
    files and never followed. Entries are yielded in sorted order per directory.
    """

    stack: list[Path] = [root]
    while stack:
        cur = stack.pop()
        with os.scandir(cur) as it:
            entries = sorted(it, key=lambda e: e.name)
        subdirs: list[Path] = []
        for e in entries:
            p = Path(e.path)
            is_dir = e.is_dir(follow_symlinks=False)
            decision = decide(p, is_dir)
            if decision is not VisitDecision.DESCEND:
                continue
            entry = WalkEntry(path=p, rel=p.relative_to(root).as_posix(), is_dir=is_dir)
            yield entry
            if is_dir:
                subdirs.append(p)
        stack.extend(reversed(subdirs))


def _policy_decider(policy: ExclusionPolicy, root: Path) -> Decider:
    return lambda p, is_dir: policy.decide(p, is_dir=is_dir, root=root)


def _copy_entry(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    tmp = dst.with_name(f".{dst.name}.verz-tmp")
    if tmp.is_symlink() or tmp.exists():
        tmp.unlink()
    if src.is_symlink():
        os.symlink(os.readlink(src), tmp)
    else:
        shutil.copy2(src, tmp)
    if dst.is_dir() and not dst.is_symlink():
        shutil.rmtree(dst)
    tmp.replace(dst)


def mirror(source: Path, dest: Path, *, policy: ExclusionPolicy) -> MirrorResult:
    """Copy `source` into `dest`, overwriting files and never deleting extras in `dest`.

    The first I/O failure aborts the walk with SyncError; files copied before it
    stay in place.
    """

    source = Path(source)
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)

    copied: list[str] = []
    skipped: list[str] = []

    def _decide(p: Path, is_dir: bool) -> VisitDecision:
        decision = policy.decide(p, is_dir=is_dir, root=source)
        if decision is not VisitDecision.DESCEND:
            skipped.append(p.relative_to(source).as_posix())
        return decision

    for entry in walk_tree(source, _decide):
        target = dest / entry.rel
        try:
            if entry.is_dir:
                if target.is_symlink() or target.is_file():
                    target.unlink()
                target.mkdir(parents=True, exist_ok=True)
            else:
                _copy_entry(entry.path, target)
        except OSError as e:
            raise SyncError(path=entry.path, message=str(e)) from e
        if not entry.is_dir:
            copied.append(entry.rel)

    logger.info("mirrored %d file(s) from %s to %s", len(copied), source, dest)
    return MirrorResult(source=source, dest=dest, copied=tuple(copied), skipped=tuple(skipped))


def clear_tree(root: Path, *, keep: tuple[str, ...] = (".git",)) -> int:
    """Remove every top-level entry of `root` except the names in `keep`."""

    if not root.exists():
        return 0
    removed = 0
    for child in sorted(root.iterdir()):
        if child.name in keep:
            continue
        try:
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
        except OSError as e:
            raise SyncError(path=child, message=str(e)) from e
        removed += 1
    return removed


def copy_single_file(source_root: Path, dest_root: Path, rel: str) -> FileCopyResult:
    """Copy one relative path. A missing source is a warning, not an error."""

    src = source_root / rel
    if not src.is_file():
        logger.warning("file not found in sanctuary: %s", rel)
        return FileCopyResult(rel=rel, copied=False, reason="not found in sanctuary")
    try:
        _copy_entry(src, dest_root / rel)
    except OSError as e:
        raise SyncError(path=src, message=str(e)) from e
    return FileCopyResult(rel=rel, copied=True)


def list_files(root: Path, *, policy: ExclusionPolicy) -> list[str]:
    """Relative POSIX paths of every file under `root` the policy admits."""

    if not root.is_dir():
        return []
    return [e.rel for e in walk_tree(root, _policy_decider(policy, root)) if not e.is_dir]


def check_relative_path(rel: str, *, roots: Iterable[Path], policy: ExclusionPolicy) -> str:
    """Normalize a caller-supplied relative path and check it against each tree it will touch.

    Raises ValueError when the path is absolute, resolves outside any of
    `roots`, or names an entry the policy keeps out of copies.
    """

    if not rel or Path(rel).is_absolute():
        raise ValueError(f"path must be relative to the project root: {rel!r}")
    norm = Path(os.path.normpath(rel))
    for root in roots:
        base = Path(root).resolve()
        target = (base / norm).resolve()
        if base not in target.parents:
            raise ValueError(f"path escapes {root}: {rel!r}")
        if policy.skip_file(base / norm, root=base):
            raise ValueError(f"path is excluded from sanctuary copies: {rel!r}")
    return norm.as_posix()
