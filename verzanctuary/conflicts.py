from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable


@dataclass(frozen=True)
class ConflictInfo:
    file_path: str
    working_state: str  # "new file" | "modified" | "missing"
    sanctuary_state: str  # "new file" | "different content" | "missing"

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "working_state": self.working_state,
            "sanctuary_state": self.sanctuary_state,
        }


def files_identical(a: Path, b: Path) -> bool:
    """Byte-exact comparison; sizes short-circuit before content is read."""

    if a.stat().st_size != b.stat().st_size:
        return False
    with a.open("rb") as fa, b.open("rb") as fb:
        while True:
            ca = fa.read(1024 * 1024)
            cb = fb.read(1024 * 1024)
            if ca != cb:
                return False
            if not ca:
                return True


def check_file(rel: str, *, working_root: Path, snapshot_root: Path) -> ConflictInfo | None:
    working = working_root / rel
    snapshot = snapshot_root / rel
    w_exists = working.is_file()
    s_exists = snapshot.is_file()

    if not w_exists and not s_exists:
        return None
    if not w_exists:
        return ConflictInfo(rel, "missing", "new file")
    if not s_exists:
        return ConflictInfo(rel, "new file", "missing")
    if files_identical(working, snapshot):
        return None
    return ConflictInfo(rel, "modified", "different content")


def detect_conflicts(paths: Iterable[str], *, working_root: Path, snapshot_root: Path) -> list[ConflictInfo]:
    """Classify each candidate path of a restore against the live working tree.

    `snapshot_root` must already hold the materialized snapshot.
    """

    out: list[ConflictInfo] = []
    for rel in paths:
        c = check_file(rel, working_root=working_root, snapshot_root=snapshot_root)
        if c is not None:
            out.append(c)
    return out
