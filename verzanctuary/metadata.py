"""`sanctuary.yaml` I/O.

The file records who the sanctuary belongs to (identity) and what last
happened to it (state). Keys are camelCase to match the on-disk format.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import VerzanctuaryError


SCHEMA_VERSION = "0.1.0"


class MetadataError(VerzanctuaryError):
    """Raised when sanctuary.yaml cannot be parsed or has the wrong shape."""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SanctuaryIdentity:
    project_name: str
    sanctuary_id: str
    version: str
    created_utc: str
    bound_project_path: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectName": self.project_name,
            "sanctuaryId": self.sanctuary_id,
            "version": self.version,
            "createdUtc": self.created_utc,
            "boundProjectPath": self.bound_project_path,
        }


@dataclass(frozen=True)
class LastOperation:
    type: str
    completed_utc: str
    success: bool
    sanctuary_branch: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "completedUtc": self.completed_utc,
            "sanctuaryBranch": self.sanctuary_branch,
            "success": self.success,
        }


@dataclass(frozen=True)
class SanctuaryState:
    status: str = "initialized"
    last_operation: LastOperation | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "lastOperation": self.last_operation.to_dict() if self.last_operation else None,
        }


@dataclass(frozen=True)
class SanctuaryMetadata:
    identity: SanctuaryIdentity
    state: SanctuaryState = field(default_factory=SanctuaryState)

    def to_dict(self) -> dict[str, Any]:
        return {"identity": self.identity.to_dict(), "state": self.state.to_dict()}

    def with_operation(self, op: LastOperation, *, status: str | None = None) -> "SanctuaryMetadata":
        return replace(self, state=SanctuaryState(status=status or self.state.status, last_operation=op))


def new_metadata(*, project_name: str, project_path: Path, branch: str | None = None) -> SanctuaryMetadata:
    now = utc_now()
    return SanctuaryMetadata(
        identity=SanctuaryIdentity(
            project_name=project_name,
            sanctuary_id=str(uuid.uuid4()),
            version=SCHEMA_VERSION,
            created_utc=now,
            bound_project_path=str(Path(project_path).resolve()),
        ),
        state=SanctuaryState(
            status="initialized",
            last_operation=LastOperation(type="create", completed_utc=now, success=True, sanctuary_branch=branch),
        ),
    )


def _expect_mapping(value: Any, *, ctx: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise MetadataError(f"Invalid sanctuary metadata: {ctx} must be a mapping")
    return value


def _expect_str(value: Any, *, ctx: str) -> str:
    if not isinstance(value, str):
        raise MetadataError(f"Invalid sanctuary metadata: {ctx} must be a string")
    return value


def parse_metadata(data: Any) -> SanctuaryMetadata:
    root = _expect_mapping(data, ctx="document")
    ident = _expect_mapping(root.get("identity"), ctx="identity")
    state_raw = root.get("state") or {}
    state = _expect_mapping(state_raw, ctx="state")

    last_raw = state.get("lastOperation")
    last: LastOperation | None = None
    if last_raw is not None:
        lo = _expect_mapping(last_raw, ctx="state.lastOperation")
        branch = lo.get("sanctuaryBranch")
        last = LastOperation(
            type=_expect_str(lo.get("type"), ctx="state.lastOperation.type"),
            completed_utc=str(lo.get("completedUtc", "")),
            success=bool(lo.get("success", False)),
            sanctuary_branch=str(branch) if branch is not None else None,
        )

    return SanctuaryMetadata(
        identity=SanctuaryIdentity(
            project_name=_expect_str(ident.get("projectName"), ctx="identity.projectName"),
            sanctuary_id=_expect_str(ident.get("sanctuaryId"), ctx="identity.sanctuaryId"),
            version=str(ident.get("version", SCHEMA_VERSION)),
            created_utc=str(ident.get("createdUtc", "")),
            bound_project_path=_expect_str(ident.get("boundProjectPath"), ctx="identity.boundProjectPath"),
        ),
        state=SanctuaryState(status=str(state.get("status", "initialized")), last_operation=last),
    )


def load_metadata(path: Path) -> SanctuaryMetadata:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise MetadataError(f"Invalid YAML in {path}: {e}") from e
    return parse_metadata(data)


def save_metadata(path: Path, metadata: SanctuaryMetadata) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(yaml.safe_dump(metadata.to_dict(), sort_keys=False, default_flow_style=False), encoding="utf-8")
    tmp.replace(path)


def binding_warning(metadata: SanctuaryMetadata, project_path: Path) -> str | None:
    """Return a warning when the sanctuary was created for a different project."""

    bound = Path(metadata.identity.bound_project_path)
    actual = Path(project_path).resolve()
    if bound == actual:
        return None
    return f"Sanctuary is bound to {bound} but is being used from {actual}"
