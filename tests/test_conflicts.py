from __future__ import annotations

from pathlib import Path

from verzanctuary.conflicts import ConflictInfo, check_file, detect_conflicts, files_identical


def _roots(tmp_path: Path) -> tuple[Path, Path]:
    working = tmp_path / "working"
    snapshot = tmp_path / "snapshot"
    working.mkdir()
    snapshot.mkdir()
    return working, snapshot


def test_classification_table(tmp_path: Path) -> None:
    working, snapshot = _roots(tmp_path)
    (snapshot / "only_snapshot.txt").write_text("s", encoding="utf-8")
    (working / "only_working.txt").write_text("w", encoding="utf-8")
    (working / "same.txt").write_text("same", encoding="utf-8")
    (snapshot / "same.txt").write_text("same", encoding="utf-8")
    (working / "changed.txt").write_text("two", encoding="utf-8")
    (snapshot / "changed.txt").write_text("one", encoding="utf-8")

    def check(rel: str) -> ConflictInfo | None:
        return check_file(rel, working_root=working, snapshot_root=snapshot)

    assert check("neither.txt") is None
    assert check("only_snapshot.txt") == ConflictInfo("only_snapshot.txt", "missing", "new file")
    assert check("only_working.txt") == ConflictInfo("only_working.txt", "new file", "missing")
    assert check("same.txt") is None
    assert check("changed.txt") == ConflictInfo("changed.txt", "modified", "different content")


def test_same_size_different_bytes_is_a_conflict(tmp_path: Path) -> None:
    working, snapshot = _roots(tmp_path)
    (working / "f.bin").write_bytes(b"\x00\x01\x02")
    (snapshot / "f.bin").write_bytes(b"\x00\x01\x03")

    assert files_identical(working / "f.bin", snapshot / "f.bin") is False
    conflicts = detect_conflicts(["f.bin", "absent"], working_root=working, snapshot_root=snapshot)
    assert [c.file_path for c in conflicts] == ["f.bin"]
    assert conflicts[0].to_dict()["working_state"] == "modified"
