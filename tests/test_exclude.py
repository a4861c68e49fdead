from __future__ import annotations

from pathlib import Path

from verzanctuary.exclude import ExclusionPolicy, VisitDecision
from verzanctuary.paths import SanctuaryEnv, resolve_paths


def _policy(tmp_path: Path, *, host_is_git: bool = True, env: SanctuaryEnv | None = None) -> tuple[Path, ExclusionPolicy]:
    proj = tmp_path / "proj"
    proj.mkdir(exist_ok=True)
    env = env or SanctuaryEnv()
    paths = resolve_paths(proj, env=env)
    return proj.resolve(), ExclusionPolicy.for_capture(paths, env, project_dir=proj, host_is_git=host_is_git)


def test_git_dir_skipped_only_for_git_projects(tmp_path: Path) -> None:
    proj, git_policy = _policy(tmp_path, host_is_git=True)
    _, plain_policy = _policy(tmp_path, host_is_git=False)

    assert git_policy.skip_directory(proj / ".git") is True
    assert plain_policy.skip_directory(proj / ".git") is False
    assert git_policy.skip_file(proj / "sub" / ".git", root=proj) is True


def test_reserved_names_skipped_anywhere(tmp_path: Path) -> None:
    proj, policy = _policy(tmp_path)

    assert policy.skip_directory(proj / "deep" / "other.sanctuary") is True
    assert policy.skip_directory(proj / "a" / "b" / "sanctuary.workingTmp") is True
    assert policy.skip_directory(proj / "src") is False


def test_file_under_excluded_ancestor_is_skipped(tmp_path: Path) -> None:
    proj, policy = _policy(tmp_path)

    f = proj / "x.sanctuary" / "one" / "two" / "three.txt"
    assert policy.skip_file(f, root=proj) is True
    assert policy.decide(f, is_dir=False, root=proj) is VisitDecision.SKIP_ENTRY
    assert policy.skip_file(proj / "one" / "two" / "three.txt", root=proj) is False


def test_sanctuary_and_override_roots_skipped(tmp_path: Path) -> None:
    inside = tmp_path / "proj" / "backups"
    env = SanctuaryEnv.from_environ({"VERZANCTUARY_WORKSPACE_DIR": str(inside)})
    proj, policy = _policy(tmp_path, env=env)

    assert policy.skip_directory(inside.resolve()) is True
    assert policy.skip_directory(inside.resolve() / "nested") is True
    assert policy.sanctuary_dir is not None
    assert policy.skip_directory(policy.sanctuary_dir) is True
    assert policy.decide(proj / "backupsX", is_dir=True, root=proj) is VisitDecision.DESCEND


def test_git_only_policy_ignores_host_flag(tmp_path: Path) -> None:
    policy = ExclusionPolicy.git_only()
    root = tmp_path / "browse"

    assert policy.decide(root / ".git", is_dir=True, root=root) is VisitDecision.SKIP_SUBTREE
    assert policy.skip_file(root / ".git" / "hooks" / "pre-commit", root=root) is True
    # Restores carry every snapshot file, reserved-looking names included.
    assert policy.skip_directory(root / "docs.sanctuary") is False


def test_override_root_containing_project_is_dropped(tmp_path: Path) -> None:
    env = SanctuaryEnv.from_environ({"VERZANCTUARY_SANCTUARY_DIR": str(tmp_path)})
    proj, policy = _policy(tmp_path, env=env)

    assert policy.override_roots == ()
    assert policy.skip_directory(proj / "src") is False


def test_nested_repositories_skipped_even_without_host_git(tmp_path: Path) -> None:
    proj, policy = _policy(tmp_path, host_is_git=False)

    assert policy.decide(proj / ".git", is_dir=True, root=proj) is VisitDecision.DESCEND
    assert policy.decide(proj / "vendor" / ".git", is_dir=True, root=proj) is VisitDecision.SKIP_SUBTREE
    assert policy.skip_file(proj / "vendor" / ".git" / "HEAD", root=proj) is True
    # Submodule-style gitfile.
    assert policy.skip_file(proj / "vendor" / ".git", root=proj) is True
    assert policy.skip_file(proj / "vendor" / "lib.txt", root=proj) is False
