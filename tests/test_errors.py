from __future__ import annotations

import contextlib
from pathlib import Path
from typing import Iterator

import pytest

from verzanctuary.errors import BranchNotFoundError, GitCommandError, LockContentionError, SyncError


@contextlib.contextmanager
def _passthrough() -> Iterator[None]:
    yield


@pytest.mark.parametrize(
    "exc",
    [
        GitCommandError(command=("add", "-A"), returncode=128, stderr="fatal: boom\n"),
        BranchNotFoundError("auto-a", "auto-b"),
        LockContentionError(operation="create_snapshot"),
        SyncError(path=Path("a.txt"), message="disk full"),
    ],
)
def test_errors_propagate_through_context_managers(exc: Exception) -> None:
    with pytest.raises(type(exc)) as ei:
        with _passthrough():
            raise exc
    assert ei.value is exc
    assert ei.value.__traceback__ is not None


def test_error_messages() -> None:
    assert str(GitCommandError(command=("add", "-A"), returncode=128, stderr="fatal: boom\n")) == (
        "git add -A failed with exit code 128: fatal: boom"
    )
    assert str(BranchNotFoundError("auto-a", "auto-b")) == "Branch not found: auto-a or auto-b"
    assert "verz lock unlock --force" in str(LockContentionError(operation="cleanup"))
