from __future__ import annotations

import logging
import stat
import time
from pathlib import Path

from .errors import HookInstallError


logger = logging.getLogger(__name__)

PRE_COMMIT_HOOK = """#!/bin/bash

current_branch=$(git symbolic-ref --short HEAD 2>/dev/null)

if [[ "$current_branch" =~ ^(auto-|fake-) ]]; then
    echo "Cannot commit to sanctuary branch: $current_branch"
    exit 1
fi

if [[ "$current_branch" =~ ^practice- ]]; then
    echo "Practice branch commit allowed: $current_branch"
    exit 0
fi

echo "Commits blocked in sanctuary workspace for safety (create a practice-* branch to experiment)"
exit 1
"""


def _ensure_real_dir(path: Path) -> None:
    if path.is_symlink() or (path.exists() and not path.is_dir()):
        logger.warning("removing file or symlink at %s", path)
        path.unlink()


def ensure_hooks_directory(hooks_dir: Path, *, max_tries: int = 3, retry_delay: float = 0.05) -> Path:
    """Make `hooks_dir` a real directory, replacing any file or symlink in the way."""

    _ensure_real_dir(hooks_dir)
    tries = 0
    while not hooks_dir.is_dir() and tries < max_tries:
        tries += 1
        try:
            hooks_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("failed to create hooks directory %s (attempt %d): %s", hooks_dir, tries, e)
            time.sleep(retry_delay)
    if not hooks_dir.is_dir():
        raise HookInstallError(f"Failed to create hooks directory at {hooks_dir} after {tries} tries")
    return hooks_dir


def install_browse_protection(workspace: Path) -> Path:
    """Install the pre-commit hook that keeps the browse workspace read-only.

    Commits are refused on `auto-*` and `fake-*` branches and allowed only on
    `practice-*` branches.
    """

    git_dir = workspace / ".git"
    _ensure_real_dir(git_dir)
    git_dir.mkdir(parents=True, exist_ok=True)

    hooks_dir = ensure_hooks_directory(git_dir / "hooks")
    hook = hooks_dir / "pre-commit"
    hook.write_text(PRE_COMMIT_HOOK, encoding="utf-8")
    hook.chmod(hook.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return hook
