from __future__ import annotations

import os
from pathlib import Path

import pytest

from verzanctuary.errors import SyncError
from verzanctuary.exclude import ExclusionPolicy, VisitDecision
from verzanctuary.sync import check_relative_path, clear_tree, copy_single_file, list_files, mirror, walk_tree


def _write(root: Path, rel: str, text: str) -> Path:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


def test_walk_tree_honours_three_way_decision(tmp_path: Path) -> None:
    _write(tmp_path, "keep/a.txt", "a")
    _write(tmp_path, "prune/b.txt", "b")
    _write(tmp_path, "drop.txt", "c")

    def decide(p: Path, is_dir: bool) -> VisitDecision:
        if p.name == "prune":
            return VisitDecision.SKIP_SUBTREE
        if p.name == "drop.txt":
            return VisitDecision.SKIP_ENTRY
        return VisitDecision.DESCEND

    seen = [(e.rel, e.is_dir) for e in walk_tree(tmp_path, decide)]
    assert seen == [("keep", True), ("keep/a.txt", False)]


def test_mirror_overwrites_but_never_deletes_extras(tmp_path: Path) -> None:
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    _write(src, "a.txt", "new")
    _write(src, "nested/deep/b.txt", "b")
    _write(dst, "a.txt", "old")
    _write(dst, "extra.txt", "extra")

    res = mirror(src, dst, policy=ExclusionPolicy.git_only())
    assert sorted(res.copied) == ["a.txt", "nested/deep/b.txt"]
    assert (dst / "a.txt").read_text(encoding="utf-8") == "new"
    assert (dst / "nested" / "deep" / "b.txt").read_text(encoding="utf-8") == "b"
    assert (dst / "extra.txt").read_text(encoding="utf-8") == "extra"


def test_mirror_preserves_destination_git_dir(tmp_path: Path) -> None:
    src = tmp_path / "src"
    dst = tmp_path / "lab"
    _write(src, "a.txt", "a")
    _write(src, ".git/HEAD", "ref: refs/heads/sanctuary\n")
    _write(dst, ".git/HEAD", "ref: refs/heads/main\n")

    res = mirror(src, dst, policy=ExclusionPolicy.git_only())
    assert ".git" in res.skipped
    assert (dst / ".git" / "HEAD").read_text(encoding="utf-8") == "ref: refs/heads/main\n"
    assert (dst / "a.txt").exists()


def test_mirror_surfaces_io_errors(tmp_path: Path, monkeypatch) -> None:
    src = tmp_path / "src"
    _write(src, "a.txt", "a")

    def boom(*args, **kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr("verzanctuary.sync.shutil.copy2", boom)
    with pytest.raises(SyncError, match="denied"):
        mirror(src, tmp_path / "dst", policy=ExclusionPolicy.git_only())


def test_clear_tree_keeps_git(tmp_path: Path) -> None:
    _write(tmp_path, ".git/hooks/pre-commit", "#!/bin/sh\n")
    _write(tmp_path, "a.txt", "a")
    _write(tmp_path, "dir/b.txt", "b")

    assert clear_tree(tmp_path) == 2
    assert sorted(p.name for p in tmp_path.iterdir()) == [".git"]


def test_copy_single_file(tmp_path: Path) -> None:
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    _write(src, "pkg/mod.py", "x = 1\n")

    ok = copy_single_file(src, dst, "pkg/mod.py")
    assert ok.copied is True
    assert (dst / "pkg" / "mod.py").read_text(encoding="utf-8") == "x = 1\n"

    missing = copy_single_file(src, dst, "nope.txt")
    assert missing.copied is False
    assert not (dst / "nope.txt").exists()


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
def test_mirror_copies_symlinks_as_links(tmp_path: Path) -> None:
    src = tmp_path / "src"
    _write(src, "target.txt", "t")
    os.symlink("target.txt", src / "link.txt")

    mirror(src, tmp_path / "dst", policy=ExclusionPolicy.git_only())
    assert (tmp_path / "dst" / "link.txt").is_symlink()
    assert os.readlink(tmp_path / "dst" / "link.txt") == "target.txt"


def test_list_files_applies_policy(tmp_path: Path) -> None:
    _write(tmp_path, "a.txt", "a")
    _write(tmp_path, ".git/config", "c")
    _write(tmp_path, "sub/b.txt", "b")

    assert list_files(tmp_path, policy=ExclusionPolicy.git_only()) == ["a.txt", "sub/b.txt"]
    assert list_files(tmp_path / "missing", policy=ExclusionPolicy.git_only()) == []


def test_check_relative_path(tmp_path: Path) -> None:
    work = tmp_path / "proj"
    snap = tmp_path / "proj.sanctuary" / "browse"
    work.mkdir()
    snap.mkdir(parents=True)
    roots = (work, snap)
    policy = ExclusionPolicy.git_only()

    assert check_relative_path("./src/../a.txt", roots=roots, policy=policy) == "a.txt"
    assert check_relative_path("src/b.txt", roots=roots, policy=policy) == "src/b.txt"
    for bad in ("", ".", "..", "../sanctuary.yaml", "src/../../x", str(work / "a.txt"), ".git/config"):
        with pytest.raises(ValueError):
            check_relative_path(bad, roots=roots, policy=policy)


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
def test_check_relative_path_rejects_symlink_escape(tmp_path: Path) -> None:
    work = tmp_path / "proj"
    work.mkdir()
    (tmp_path / "outside").mkdir()
    os.symlink(tmp_path / "outside", work / "link")

    with pytest.raises(ValueError):
        check_relative_path("link/x.txt", roots=(work,), policy=ExclusionPolicy.git_only())
