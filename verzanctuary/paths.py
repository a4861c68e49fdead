from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .errors import ProjectRootError


SANCTUARY_SUFFIX = ".sanctuary"
SANCTUARY_GIT_DIRNAME = ".sanctuary"
WORKSPACES_SUFFIX = ".verzspaces"
WORKING_TMP_NAME = "sanctuary.workingTmp"
METADATA_FILENAME = "sanctuary.yaml"
LOG_FILENAME = "verzanctuary.log.jsonl"

ENV_SANCTUARY_DIR = "VERZANCTUARY_SANCTUARY_DIR"
ENV_WORKSPACE_PARENT = "VERZANCTUARY_WORKSPACE_PARENT"
ENV_WORKSPACE_DIR = "VERZANCTUARY_WORKSPACE_DIR"

_NETWORK_PREFIXES = ("/mnt/", "/net/", "/nfs/")


@dataclass(frozen=True)
class SanctuaryEnv:
    """Location overrides, collected once per session.

    Explicit values (CLI flags) take precedence over the process environment.
    """

    sanctuary_dir: Path | None = None
    workspace_parent: Path | None = None
    workspace_dir: Path | None = None

    @classmethod
    def from_environ(
        cls,
        environ: Mapping[str, str],
        *,
        sanctuary_dir: Path | None = None,
        workspace_parent: Path | None = None,
    ) -> "SanctuaryEnv":
        def _pick(explicit: Path | None, key: str) -> Path | None:
            if explicit is not None:
                return Path(explicit).expanduser().resolve()
            raw = environ.get(key)
            return Path(raw).expanduser().resolve() if raw else None

        return cls(
            sanctuary_dir=_pick(sanctuary_dir, ENV_SANCTUARY_DIR),
            workspace_parent=_pick(workspace_parent, ENV_WORKSPACE_PARENT),
            workspace_dir=_pick(None, ENV_WORKSPACE_DIR),
        )

    def override_roots(self) -> tuple[Path, ...]:
        """Configured directories that must never be copied into a snapshot."""

        return tuple(p for p in (self.sanctuary_dir, self.workspace_dir) if p is not None)


@dataclass(frozen=True)
class SanctuaryPaths:
    sanctuary_dir: Path
    git_dir: Path
    workspace_container: Path
    browse_dir: Path
    lab_dir: Path
    metadata_file: Path
    log_file: Path
    is_colocated: bool
    sanctuary_parent: Path
    workspace_parent: Path


def resolve_paths(project_dir: Path, *, project_name: str | None = None, env: SanctuaryEnv | None = None) -> SanctuaryPaths:
    """Map a project directory and location overrides to every sanctuary location.

    Only override directories that do not exist yet are created; nothing else
    touches the filesystem, so this is safe to call repeatedly.
    """

    env = env or SanctuaryEnv()
    project_dir = Path(project_dir).resolve()
    name = project_name or project_dir.name

    sanctuary_parent = env.sanctuary_dir or project_dir.parent
    workspace_parent = env.workspace_parent or sanctuary_parent
    for override in (env.sanctuary_dir, env.workspace_parent):
        if override is not None:
            override.mkdir(parents=True, exist_ok=True)

    sanctuary_dir = sanctuary_parent / f"{name}{SANCTUARY_SUFFIX}"
    is_colocated = workspace_parent == sanctuary_parent
    container = sanctuary_dir if is_colocated else workspace_parent / f"{name}{WORKSPACES_SUFFIX}"

    return SanctuaryPaths(
        sanctuary_dir=sanctuary_dir,
        git_dir=sanctuary_dir / SANCTUARY_GIT_DIRNAME,
        workspace_container=container,
        browse_dir=container / "browse",
        lab_dir=container / "lab",
        metadata_file=sanctuary_dir / METADATA_FILENAME,
        log_file=sanctuary_dir / LOG_FILENAME,
        is_colocated=is_colocated,
        sanctuary_parent=sanctuary_parent,
        workspace_parent=workspace_parent,
    )


def find_project_root(start: Path, *, use_git_root: bool = True) -> tuple[Path, bool]:
    """Return (project_root, is_git_repository).

    With `use_git_root`, walk up from `start` to the nearest directory holding
    `.git`. Otherwise `start` itself is the root.
    """

    cur = Path(start).resolve()
    if not use_git_root:
        return cur, (cur / ".git").exists()
    for p in (cur, *cur.parents):
        if (p / ".git").exists():
            return p, True
    raise ProjectRootError("Not a Git repository (or any of the parent directories). Cannot find .git folder.")


def is_network_storage(path: Path) -> bool:
    s = str(path)
    return s.startswith("\\\\") or s.startswith(_NETWORK_PREFIXES)


def describe_layout(paths: SanctuaryPaths) -> str:
    return "Co-located" if paths.is_colocated else "Separated"


def environment_info(paths: SanctuaryPaths, env: SanctuaryEnv) -> str:
    sanctuary_env = str(env.sanctuary_dir) if env.sanctuary_dir else "Not set (using project parent)"
    workspace_env = str(env.workspace_parent) if env.workspace_parent else "Not set (using sanctuary dir)"
    lines = [
        "Environment Configuration:",
        f"{ENV_SANCTUARY_DIR}: {sanctuary_env}",
        f"{ENV_WORKSPACE_PARENT}: {workspace_env}",
        "",
        "Resolved Paths:",
        f"Sanctuary: {paths.sanctuary_dir}",
        f"Workspace parent: {paths.workspace_parent}",
        f"Workspace container: {paths.workspace_container}",
        f"Browse workspace: {paths.browse_dir}",
        f"Lab workspace: {paths.lab_dir}",
        "",
        f"Storage Layout: {describe_layout(paths)}",
    ]
    return "\n".join(lines)
