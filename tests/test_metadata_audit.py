from __future__ import annotations

import json
from pathlib import Path

import pytest

from verzanctuary.audit import AuditLog
from verzanctuary.metadata import (
    LastOperation,
    MetadataError,
    binding_warning,
    load_metadata,
    new_metadata,
    save_metadata,
)
from verzanctuary.scenarios import BackupScenario


def test_metadata_save_and_load(tmp_path: Path) -> None:
    path = tmp_path / "proj.sanctuary" / "sanctuary.yaml"
    md = new_metadata(project_name="proj", project_path=tmp_path / "proj")
    save_metadata(path, md)

    text = path.read_text(encoding="utf-8")
    assert "projectName: proj" in text
    assert "boundProjectPath:" in text

    loaded = load_metadata(path)
    assert loaded == md
    assert loaded.identity.version == "0.1.0"
    assert loaded.state.status == "initialized"

    updated = loaded.with_operation(
        LastOperation(type="cleanup", completed_utc="2025-01-01T00:00:00+00:00", success=True),
        status="ready",
    )
    save_metadata(path, updated)
    assert load_metadata(path).state.last_operation == updated.state.last_operation


def test_metadata_rejects_bad_shape(tmp_path: Path) -> None:
    path = tmp_path / "sanctuary.yaml"
    path.write_text("identity: [1, 2]\n", encoding="utf-8")
    with pytest.raises(MetadataError, match="identity"):
        load_metadata(path)

    path.write_text("identity: {projectName: [\n", encoding="utf-8")
    with pytest.raises(MetadataError, match="Invalid YAML"):
        load_metadata(path)


def test_binding_warning(tmp_path: Path) -> None:
    md = new_metadata(project_name="proj", project_path=tmp_path / "proj")
    assert binding_warning(md, tmp_path / "proj") is None
    assert "bound to" in (binding_warning(md, tmp_path / "other") or "")


def test_audit_log_lines(tmp_path: Path) -> None:
    log = AuditLog(tmp_path / "verzanctuary.log.jsonl")
    assert log.tail() == []

    log.append(type="create", message="first", result="success", branch="auto-1")
    log.append(type="checkout_lab", message="Checkout to lab", result="error", details={"exception": 'bad "quote"'})
    log.append(type="create", message="third", result="nochange")

    lines = (tmp_path / "verzanctuary.log.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    second = json.loads(lines[1])
    assert second["details"] == {"exception": 'bad "quote"'}
    assert "branch" not in second
    assert json.loads(lines[0])["branch"] == "auto-1"
    assert "T" in second["timestamp"]

    assert log.tail(2) == lines[1:]


def test_backup_scenarios() -> None:
    assert BackupScenario.parse("before-ai-consult").message == "Before AI consultation"
    assert BackupScenario.END_OF_DAY.message == "End of day sanctuary"
    with pytest.raises(ValueError, match="unknown scenario"):
        BackupScenario.parse("lunch")
