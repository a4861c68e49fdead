from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from .audit import AuditLog
from .conflicts import ConflictInfo, detect_conflicts
from .diff import diff_directories, diff_file
from .exclude import ExclusionPolicy
from .hooks import install_browse_protection
from .lock import LockInfo, StalenessPolicy, create_lock
from .metadata import LastOperation, MetadataError, binding_warning, load_metadata, new_metadata, save_metadata, utc_now
from .paths import SanctuaryEnv, describe_layout, environment_info, find_project_root, is_network_storage, resolve_paths
from .scenarios import BackupScenario
from .store import CleanupResult, SnapshotResult, SnapshotStore
from .sync import check_relative_path, copy_single_file, list_files, mirror


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MESSAGE = "Automated sanctuary"
BACKUP_MESSAGE = "Auto-backup before checkout"
COMPARE_MESSAGE = "Temporary comparison snapshot"


@dataclass(frozen=True)
class CheckoutResult:
    branch: str
    target: str  # working | browse | lab
    aborted: bool = False
    conflicts: tuple[ConflictInfo, ...] = ()
    backup_branch: str | None = None
    restored: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    location: Path | None = None

    @property
    def ok(self) -> bool:
        return not self.aborted

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch": self.branch,
            "target": self.target,
            "aborted": self.aborted,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "backup_branch": self.backup_branch,
            "restored": list(self.restored),
            "missing": list(self.missing),
            "location": str(self.location) if self.location else None,
        }


class SanctuaryManager:
    """Facade sequencing snapshot, restore and diff operations for one project.

    Every mutating public method runs under the sanctuary lock. The lock is
    not reentrant, so compound operations call the `_..._unlocked` helpers.
    """

    def __init__(
        self,
        working_dir: Path,
        *,
        use_git_root: bool = True,
        use_locking: bool = True,
        env: SanctuaryEnv | None = None,
        project_name: str | None = None,
        is_stale: StalenessPolicy | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.project_dir, self.is_git_repository = find_project_root(Path(working_dir), use_git_root=use_git_root)
        self.project_name = project_name or self.project_dir.name
        self.env = env or SanctuaryEnv()
        self.paths = resolve_paths(self.project_dir, project_name=self.project_name, env=self.env)
        self.store = SnapshotStore(git_dir=self.paths.git_dir, work_tree=self.paths.browse_dir, now=now)
        self.lock = create_lock(self.paths.sanctuary_dir, use_locking=use_locking, is_stale=is_stale)
        self.audit = AuditLog(self.paths.log_file)
        self.capture_policy = ExclusionPolicy.for_capture(
            self.paths, self.env, project_dir=self.project_dir, host_is_git=self.is_git_repository
        )
        self.restore_policy = ExclusionPolicy.git_only()
        self.binding_warning: str | None = None

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        """Create the sanctuary repository and metadata if missing.

        Returns True when the repository was created by this call.
        """

        created = self.store.initialize()
        md_path = self.paths.metadata_file
        if not md_path.exists():
            if not created:
                logger.warning("metadata file was missing; recreating %s", md_path)
            save_metadata(md_path, new_metadata(project_name=self.project_name, project_path=self.project_dir))
            return created

        try:
            md = load_metadata(md_path)
        except MetadataError as e:
            logger.warning("unreadable metadata, recreating %s: %s", md_path, e)
            self.audit.append(type="metadata", message="Recreated unreadable metadata", result="warning", details={"exception": str(e)})
            save_metadata(md_path, new_metadata(project_name=self.project_name, project_path=self.project_dir))
            return created

        warning = binding_warning(md, self.project_dir)
        if warning and warning != self.binding_warning:
            logger.warning(warning)
            self.audit.append(type="binding", message=warning, result="warning")
        self.binding_warning = warning
        return created

    def _record(
        self,
        *,
        type: str,
        message: str,
        result: str,
        branch: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.audit.append(type=type, message=message, result=result, branch=branch, details=details)
        md_path = self.paths.metadata_file
        if not md_path.exists():
            return
        try:
            md = load_metadata(md_path)
        except MetadataError as e:
            logger.warning("cannot update sanctuary metadata: %s", e)
            return
        op = LastOperation(type=type, completed_utc=utc_now(), success=result != "error", sanctuary_branch=branch)
        save_metadata(md_path, md.with_operation(op, status="error" if result == "error" else "ready"))

    def _audited(self, *, type: str, message: str, branch: str | None, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except Exception as e:
            self._record(type=type, message=message, result="error", branch=branch, details={"exception": str(e)})
            raise

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _capture_unlocked(self, message: str) -> SnapshotResult:
        def _go() -> SnapshotResult:
            self.initialize()
            return self.store.capture(self.project_dir, policy=self.capture_policy, message=message)

        res = self._audited(type="create", message=message, branch=None, fn=_go)
        self._record(type="create", message=message, result=res.result, branch=res.branch)
        return res

    def capture(self, message: str = DEFAULT_MESSAGE) -> SnapshotResult:
        return self.lock.with_lock("create_snapshot", lambda: self._capture_unlocked(message))

    def create_snapshot(self, message: str = DEFAULT_MESSAGE) -> str:
        """Snapshot the project and return the branch holding it.

        When nothing changed since the last snapshot, that branch is returned.
        """

        return self.capture(message).branch

    def quick_backup(self, scenario: BackupScenario) -> str:
        return self.create_snapshot(scenario.message)

    def list_snapshots(self) -> list[str]:
        return self.store.list_branches()

    def latest_snapshot(self) -> str | None:
        return self.store.latest_branch()

    def cleanup(self, keep: int = 10) -> CleanupResult:
        def _go() -> CleanupResult:
            res = self._audited(type="cleanup", message=f"Cleanup keeping {keep}", branch=None, fn=lambda: self.store.cleanup(keep))
            details: dict[str, Any] = {"deleted": list(res.deleted)}
            if res.failed:
                details["failed"] = {o.branch: o.error for o in res.failed}
            self._record(
                type="cleanup",
                message=f"Cleanup keeping {keep}",
                result="partial" if res.failed else "success",
                details=details,
            )
            return res

        return self.lock.with_lock("cleanup", _go)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def _restore_path(self, rel: str) -> str:
        return check_relative_path(rel, roots=(self.project_dir, self.paths.browse_dir), policy=self.restore_policy)

    def _checkout_to_working_unlocked(self, branch: str, files: list[str], force: bool) -> CheckoutResult:
        self.initialize()
        self.store.checkout(branch)
        browse = self.paths.browse_dir

        candidates = files or self.store.files_in(branch)
        conflicts = detect_conflicts(candidates, working_root=self.project_dir, snapshot_root=browse)
        if conflicts and not force:
            logger.warning("checkout of %s aborted: %d conflicting file(s)", branch, len(conflicts))
            self._record(
                type="checkout_working",
                message="Checkout aborted due to conflicts",
                result="aborted",
                branch=branch,
                details={"conflicts": [c.file_path for c in conflicts]},
            )
            return CheckoutResult(branch=branch, target="working", aborted=True, conflicts=tuple(conflicts))

        backup = self._capture_unlocked(BACKUP_MESSAGE)
        # The backup capture rewrote the shared checkout.
        self.store.checkout(branch)

        restored: list[str] = []
        missing: list[str] = []
        if files:
            for rel in files:
                r = copy_single_file(browse, self.project_dir, rel)
                (restored if r.copied else missing).append(rel)
        else:
            restored.extend(mirror(browse, self.project_dir, policy=self.restore_policy).copied)

        self._record(
            type="checkout_working",
            message=f"Checkout to working directory ({len(restored)} file(s))",
            result="success",
            branch=branch,
            details={"backup": backup.branch, "forced": bool(conflicts)},
        )
        return CheckoutResult(
            branch=branch,
            target="working",
            conflicts=tuple(conflicts),
            backup_branch=backup.branch if backup.created else None,
            restored=tuple(restored),
            missing=tuple(missing),
            location=self.project_dir,
        )

    def checkout_to_working(self, branch: str, files: Iterable[str] = (), *, force: bool = False) -> CheckoutResult:
        """Restore a snapshot into the project.

        Conflicts abort the restore unless `force` is given. A backup snapshot
        of the current state is taken before any file is overwritten.
        """

        file_list = [self._restore_path(f) for f in files]
        return self.lock.with_lock(
            "checkout_to_working",
            lambda: self._audited(
                type="checkout_working",
                message="Checkout to working directory",
                branch=branch,
                fn=lambda: self._checkout_to_working_unlocked(branch, file_list, force),
            ),
        )

    def checkout_to_browse(self, branch: str) -> CheckoutResult:
        def _go() -> CheckoutResult:
            self.initialize()
            self.store.checkout(branch)
            install_browse_protection(self.paths.browse_dir)
            self._record(type="checkout_browse", message="Checkout to browse workspace", result="success", branch=branch)
            return CheckoutResult(branch=branch, target="browse", location=self.paths.browse_dir)

        return self.lock.with_lock(
            "checkout_browse",
            lambda: self._audited(type="checkout_browse", message="Checkout to browse workspace", branch=branch, fn=_go),
        )

    def checkout_to_lab(self, branch: str) -> CheckoutResult:
        """Overlay a snapshot onto the lab workspace, leaving its `.git` untouched."""

        def _go() -> CheckoutResult:
            self.initialize()
            self.store.checkout(branch)
            res = mirror(self.paths.browse_dir, self.paths.lab_dir, policy=self.restore_policy)
            self._record(type="checkout_lab", message="Checkout to lab", result="success", branch=branch)
            return CheckoutResult(branch=branch, target="lab", restored=res.copied, location=self.paths.lab_dir)

        return self.lock.with_lock(
            "checkout_lab",
            lambda: self._audited(type="checkout_lab", message="Checkout to lab", branch=branch, fn=_go),
        )

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------

    def diff(self, from_branch: str, to_branch: str, *, paths: list[str] | None = None) -> str:
        return self.store.diff(from_branch, to_branch, paths=paths)

    def diff_against_working(self, branch: str, path: str | None = None) -> str:
        """Diff a snapshot (old side) against the live project (new side)."""

        if path is not None:
            path = self._restore_path(path)

        def _go() -> str:
            self.store.checkout(branch)
            browse = self.paths.browse_dir
            from_label = f"sanctuary/{branch}"
            to_label = "working directory"
            if path is not None:
                return diff_file(path, browse / path, self.project_dir / path, from_label=from_label, to_label=to_label)
            files = set(self.store.files_in(branch)) | set(list_files(self.project_dir, policy=self.capture_policy))
            return diff_directories(browse, self.project_dir, files=files, from_label=from_label, to_label=to_label)

        return self.lock.with_lock("diff_sanctuary", _go)

    def compare_with_latest(self) -> str | None:
        """Diff the latest snapshot against the current project state.

        Returns None when there are no snapshots yet. The temporary snapshot
        used for the comparison is deleted again.
        """

        def _go() -> str | None:
            latest = self.store.latest_branch()
            if latest is None:
                return None
            temp = self._capture_unlocked(COMPARE_MESSAGE)
            if not temp.created:
                # Project matches the current checkout, which may not be `latest`.
                return self.store.diff_to_head(latest)
            try:
                return self.store.diff(latest, temp.branch)
            finally:
                self.store.checkout(latest)
                self.store.delete_branch(temp.branch)
                self._record(type="compare", message="Removed temporary comparison snapshot", result="success", branch=temp.branch)

        return self.lock.with_lock("compare_latest", _go)

    # ------------------------------------------------------------------
    # Lock and introspection
    # ------------------------------------------------------------------

    def is_locked(self) -> bool:
        return self.lock.is_locked()

    def lock_info(self) -> LockInfo | None:
        return self.lock.lock_info()

    def force_unlock(self) -> bool:
        removed = self.lock.force_unlock()
        if removed:
            self.audit.append(type="unlock", message="Forced lock removal", result="success")
        return removed

    def show_log(self, last_n: int = 10) -> list[str]:
        return self.audit.tail(last_n)

    def info(self) -> str:
        network = " (Network Storage Detected)" if is_network_storage(self.paths.sanctuary_parent) else ""
        return "\n".join(
            [
                f"Project: {self.project_name}",
                f"Layout: {describe_layout(self.paths)}{network}",
                f"Sanctuary: {self.paths.sanctuary_dir.name}/",
                f"Browse workspace: {self.paths.browse_dir.name}/",
                f"Lab workspace: {self.paths.lab_dir.name}/",
                f"Total snapshots: {len(self.list_snapshots())}",
            ]
        )

    def environment_info(self) -> str:
        return environment_info(self.paths, self.env)

    def status(self) -> str:
        try:
            md = load_metadata(self.paths.metadata_file)
        except (OSError, MetadataError) as e:
            return f"Status: Unknown ({e})"
        last = md.state.last_operation
        return "\n".join(
            [
                f"Project: {self.project_name}",
                f"Status: {md.state.status}",
                f"Last Operation: {last.type if last else None}",
                f"Last Success: {last.success if last else None}",
                f"Completed: {last.completed_utc if last else None}",
            ]
        )
