from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import (
    BranchNotFoundError,
    GitCommandError,
    LockContentionError,
    ProjectRootError,
    StaleLockError,
    VerzanctuaryError,
)
from .paths import SanctuaryEnv

if TYPE_CHECKING:
    from .manager import SanctuaryManager


__version__ = "0.1.0"

EXIT_CONFIG = 2
EXIT_LOCKED = 3
EXIT_NOT_FOUND = 4
EXIT_CONFLICT = 5


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("-d", "--directory", type=Path, default=Path("."), help="Project directory")
    p.add_argument("--no-git", dest="no_git", action="store_true", help="Use the directory as project root even without .git")
    p.add_argument("--ignore-locks", dest="ignore_locks", action="store_true", help="Skip sanctuary locking")
    p.add_argument("--sanctuary-dir", type=Path, default=None, help="Parent directory for the sanctuary")
    p.add_argument("--workspace-parent", type=Path, default=None, help="Parent directory for browse/lab workspaces")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="verz",
        description="Sidecar snapshots of a project's working tree, kept outside its own git history",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")
    sub = p.add_subparsers(dest="cmd", required=True)

    create = sub.add_parser("create", help="Snapshot the current project state")
    create.add_argument("-s", "--scenario", default=None, help="Backup scenario (e.g. before_refactor)")
    create.add_argument("-m", "--message", default=None, help="Snapshot message")
    _add_common(create)

    lst = sub.add_parser("list", help="List snapshots, oldest first")
    lst.add_argument("--json", dest="json_output", action="store_true")
    _add_common(lst)

    co = sub.add_parser("checkout", help="Restore a snapshot")
    co.add_argument("branch")
    co.add_argument("files", nargs="*", help="Restore only these relative paths")
    where = co.add_mutually_exclusive_group()
    where.add_argument("--browse", action="store_true", help="Check out into the protected browse workspace")
    where.add_argument("--lab", action="store_true", help="Overlay onto the lab workspace")
    co.add_argument("--force", action="store_true", help="Overwrite conflicting files (a backup is taken first)")
    _add_common(co)

    diff = sub.add_parser("diff", help="Diff snapshots or a snapshot against the working tree")
    diff.add_argument("branch", nargs="?", default=None, help="Snapshot to compare with the working tree")
    diff.add_argument("files", nargs="*", help="Limit the diff to these paths")
    diff.add_argument("--from", dest="from_branch", default=None)
    diff.add_argument("--to", dest="to_branch", default=None)
    diff.add_argument("--latest", action="store_true", help="Compare the working tree with the latest snapshot")
    diff.add_argument("-o", "--output", type=Path, default=None, help="Write the patch to a file")
    _add_common(diff)

    cleanup = sub.add_parser("cleanup", help="Delete old snapshots")
    cleanup.add_argument("-k", "--keep", type=int, default=10)
    _add_common(cleanup)

    info = sub.add_parser("info", help="Show sanctuary information")
    info.add_argument("-e", "--env", dest="show_env", action="store_true", help="Show environment configuration")
    _add_common(info)

    status = sub.add_parser("status", help="Show sanctuary status and recent operations")
    _add_common(status)

    log = sub.add_parser("log", help="Show recent audit log entries")
    log.add_argument("-n", "--last", type=int, default=10)
    _add_common(log)

    sub.add_parser("version", help="Show version")

    lock = sub.add_parser("lock", help="Lock helpers")
    lock_sub = lock.add_subparsers(dest="lock_cmd", required=True)
    lock_status = lock_sub.add_parser("status", help="Show lock state")
    _add_common(lock_status)
    unlock = lock_sub.add_parser("unlock", help="Remove the sanctuary lock")
    unlock.add_argument("--force", action="store_true", help="Required; removes the lock even if held")
    _add_common(unlock)
    return p


def _manager(args: argparse.Namespace) -> SanctuaryManager:
    from .manager import SanctuaryManager

    env = SanctuaryEnv.from_environ(
        os.environ,
        sanctuary_dir=args.sanctuary_dir,
        workspace_parent=args.workspace_parent,
    )
    return SanctuaryManager(
        Path(args.directory),
        use_git_root=not args.no_git,
        use_locking=not args.ignore_locks,
        env=env,
    )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return _run(args)
    except ProjectRootError as e:
        print(f"error: {e}")
        print("hint: use --no-git to create a sanctuary for a non-git directory")
        return EXIT_CONFIG
    except (LockContentionError, StaleLockError) as e:
        print(f"error: {e}")
        return EXIT_LOCKED
    except BranchNotFoundError as e:
        print(f"error: {e}")
        return EXIT_NOT_FOUND
    except ValueError as e:
        print(f"error: {e}")
        return EXIT_CONFIG
    except (GitCommandError, VerzanctuaryError, OSError) as e:
        print(f"error: {e}")
        return 1


def _run(args: argparse.Namespace) -> int:
    if args.cmd == "version":
        print(f"verz {__version__}")
        return 0

    if args.cmd == "create":
        from .manager import DEFAULT_MESSAGE
        from .scenarios import BackupScenario

        m = _manager(args)
        if args.scenario:
            message = BackupScenario.parse(args.scenario).message
        else:
            message = args.message or DEFAULT_MESSAGE
        res = m.capture(message)
        if res.created:
            print(f"Created sanctuary: {res.branch}")
        else:
            print(f"No changes since {res.branch}")
        if m.binding_warning:
            print(f"warning: {m.binding_warning}")
        return 0

    if args.cmd == "list":
        branches = _manager(args).list_snapshots()
        if args.json_output:
            print(json.dumps(branches, indent=2))
        elif not branches:
            print("No sanctuaries found.")
        else:
            for b in branches:
                print(b)
        return 0

    if args.cmd == "checkout":
        m = _manager(args)
        if args.browse:
            res = m.checkout_to_browse(args.branch)
            print(f"Checked out {res.branch} to browse workspace: {res.location}")
            print("Workspace protected against commits to sanctuary branches")
            return 0
        if args.lab:
            res = m.checkout_to_lab(args.branch)
            print(f"Checked out {res.branch} to lab workspace: {res.location}")
            return 0

        res = m.checkout_to_working(args.branch, args.files, force=args.force)
        if res.aborted:
            print("The following files have changed and would conflict:")
            for c in res.conflicts:
                print(f"  {c.file_path}")
                print(f"     Working: {c.working_state}")
                print(f"     Sanctuary: {c.sanctuary_state}")
            print("Use --browse to inspect first, or --force to proceed (a backup is taken).")
            print("Checkout aborted to prevent conflicts")
            return EXIT_CONFLICT
        if res.backup_branch:
            print(f"Backup created: {res.backup_branch}")
        print(f"Checked out {res.branch} to working directory ({len(res.restored)} file(s) restored)")
        for rel in res.missing:
            print(f"warning: file not found in sanctuary: {rel}")
        return 0

    if args.cmd == "diff":
        m = _manager(args)
        patch: str | None
        if args.latest:
            patch = m.compare_with_latest()
            if patch is None:
                print("No sanctuaries found.")
                return 0
        elif args.from_branch or args.to_branch:
            if not (args.from_branch and args.to_branch):
                raise ValueError("--from and --to must be given together")
            # With --from/--to the first path lands in the `branch` positional.
            paths = [p for p in (args.branch, *args.files) if p]
            patch = m.diff(args.from_branch, args.to_branch, paths=paths or None)
        elif args.branch:
            if args.files:
                patch = "".join(m.diff_against_working(args.branch, f) for f in args.files)
            else:
                patch = m.diff_against_working(args.branch)
        else:
            raise ValueError("specify a snapshot, --from/--to, or --latest")

        if args.output is not None:
            Path(args.output).parent.mkdir(parents=True, exist_ok=True)
            Path(args.output).write_text(patch, encoding="utf-8")
            print(f"Wrote diff to {args.output}")
        elif patch:
            print(patch, end="")
        else:
            print("No differences.")
        return 0

    if args.cmd == "cleanup":
        res = _manager(args).cleanup(args.keep)
        for b in res.deleted:
            print(f"Deleted: {b}")
        for o in res.failed:
            print(f"warning: failed to delete {o.branch}: {o.error}")
        print(f"Kept {len(res.kept)} sanctuar{'y' if len(res.kept) == 1 else 'ies'}")
        return 1 if res.failed else 0

    if args.cmd == "info":
        m = _manager(args)
        print("VerZanctuary Info")
        print("=" * 30)
        print(m.info())
        if args.show_env:
            print("")
            print("Environment Configuration")
            print("-" * 30)
            print(m.environment_info())
        return 0

    if args.cmd == "status":
        m = _manager(args)
        print("Sanctuary Status")
        print("=" * 30)
        print(m.status())
        info = m.lock_info()
        print(info.describe() if info else "Unlocked")
        print("")
        print("Recent Operations")
        print("-" * 30)
        recent = m.show_log(5)
        print("\n".join(recent) if recent else "No recent operations")
        return 0

    if args.cmd == "log":
        for line in _manager(args).show_log(args.last):
            print(line)
        return 0

    if args.cmd == "lock":
        m = _manager(args)
        if args.lock_cmd == "status":
            info = m.lock_info()
            print(info.describe() if info else "Sanctuary is not locked")
            return 0
        if args.lock_cmd == "unlock":
            if not args.force:
                info = m.lock_info()
                if info is None:
                    print("Sanctuary is not locked")
                    return 0
                print(info.describe())
                print("Use --force to remove it")
                return EXIT_LOCKED
            if m.force_unlock():
                print("Lock removed")
            else:
                print("Sanctuary is not locked")
            return 0
        raise AssertionError(f"unhandled lock cmd: {args.lock_cmd}")

    raise AssertionError(f"unhandled cmd: {args.cmd}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
