from __future__ import annotations

import os
from pathlib import Path

import pytest

from verzanctuary.errors import HookInstallError, VerzanctuaryError
from verzanctuary.hooks import ensure_hooks_directory, install_browse_protection


def test_install_replaces_stray_hooks_file(tmp_path: Path) -> None:
    hooks = tmp_path / "browse" / ".git" / "hooks"
    hooks.parent.mkdir(parents=True)
    hooks.write_text("not a directory", encoding="utf-8")

    hook = install_browse_protection(tmp_path / "browse")
    assert hooks.is_dir()
    assert hook.read_text(encoding="utf-8").startswith("#!/bin/bash")
    assert os.access(hook, os.X_OK)


def test_hooks_directory_failure_raises_sanctuary_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _refuse(self: Path, *args: object, **kwargs: object) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(Path, "mkdir", _refuse)
    with pytest.raises(HookInstallError) as ei:
        ensure_hooks_directory(tmp_path / ".git" / "hooks", retry_delay=0)
    assert isinstance(ei.value, VerzanctuaryError)
    assert "after 3 tries" in str(ei.value)
