from __future__ import annotations

import difflib
from pathlib import Path
from typing import Iterable

from .conflicts import files_identical


def _is_binary(data: bytes) -> bool:
    return b"\0" in data[:8000]


def _lines(data: bytes) -> list[str]:
    return data.decode("utf-8", errors="replace").splitlines()


def diff_file(rel: str, from_file: Path, to_file: Path, *, from_label: str = "a", to_label: str = "b") -> str:
    """Git-style unified diff of one file; either side may be missing."""

    from_exists = from_file.is_file()
    to_exists = to_file.is_file()
    if not from_exists and not to_exists:
        return ""
    if from_exists and to_exists and files_identical(from_file, to_file):
        return ""

    old = from_file.read_bytes() if from_exists else b""
    new = to_file.read_bytes() if to_exists else b""

    header = [f"diff --git a/{rel} b/{rel}"]
    if not from_exists:
        header.append("new file mode 100644")
    elif not to_exists:
        header.append("deleted file mode 100644")

    a_name = f"a/{rel}" if from_exists else "/dev/null"
    b_name = f"b/{rel}" if to_exists else "/dev/null"

    if _is_binary(old) or _is_binary(new):
        header.append(f"Binary files {a_name} and {b_name} differ")
        return "\n".join(header) + "\n"

    body = difflib.unified_diff(
        _lines(old),
        _lines(new),
        fromfile=a_name,
        tofile=b_name,
        fromfiledate=from_label if from_exists else "",
        tofiledate=to_label if to_exists else "",
        lineterm="",
    )
    return "\n".join([*header, *body]) + "\n"


def diff_directories(
    from_root: Path,
    to_root: Path,
    *,
    files: Iterable[str],
    from_label: str = "a",
    to_label: str = "b",
) -> str:
    """Concatenated per-file diffs for the union of relative paths in `files`."""

    out: list[str] = []
    for rel in sorted(set(files)):
        d = diff_file(rel, from_root / rel, to_root / rel, from_label=from_label, to_label=to_label)
        if d:
            out.append(d)
    return "".join(out)
