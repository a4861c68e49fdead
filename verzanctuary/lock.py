"""Sanctuary mutual exclusion.

One marker file (`<sanctuary>/.lock`) guards every mutating operation. The
marker is written to a private temp file and then hard-linked into place, so
a reader never sees a half-written marker and two racing writers cannot both
win. Staleness is a pluggable predicate: the default treats a marker as stale
when it is older than five minutes or its owning process is gone.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, TypeVar

from .errors import LockContentionError, StaleLockError


logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_FILENAME = ".lock"
DEFAULT_MAX_AGE_SECONDS = 5 * 60
CLEANUP_ATTEMPTS = 3
CLEANUP_DELAY_SECONDS = 0.05


@dataclass(frozen=True)
class LockInfo:
    process_id: int
    timestamp: str
    operation: str
    created_ms: int

    def to_text(self) -> str:
        return (
            f"processId={self.process_id}\n"
            f"timestamp={self.timestamp}\n"
            f"operation={self.operation}\n"
            f"created={self.created_ms}\n"
        )

    @classmethod
    def parse(cls, text: str) -> "LockInfo":
        props: dict[str, str] = {}
        for line in text.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                props[key.strip()] = value.strip()
        try:
            return cls(
                process_id=int(props.get("processId", "0")),
                timestamp=props.get("timestamp", ""),
                operation=props.get("operation", "unknown"),
                created_ms=int(props.get("created", "0")),
            )
        except ValueError:
            return cls(process_id=0, timestamp="", operation="unknown", created_ms=0)

    def describe(self) -> str:
        return f"Locked by process {self.process_id} at {self.timestamp} for operation: {self.operation}"


StalenessPolicy = Callable[[LockInfo], bool]


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user.
        return True
    except OSError:
        return False
    return True


def default_staleness(
    *,
    max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
    is_alive: Callable[[int], bool] = pid_alive,
    clock: Callable[[], float] = time.time,
) -> StalenessPolicy:
    def _is_stale(info: LockInfo) -> bool:
        age = clock() - info.created_ms / 1000.0
        if age > max_age_seconds:
            return True
        return not is_alive(info.process_id)

    return _is_stale


class SanctuaryLock:
    def __init__(
        self,
        sanctuary_dir: Path,
        *,
        is_stale: StalenessPolicy | None = None,
        pid: int | None = None,
        cleanup_attempts: int = CLEANUP_ATTEMPTS,
        cleanup_delay: float = CLEANUP_DELAY_SECONDS,
    ) -> None:
        self.sanctuary_dir = Path(sanctuary_dir)
        self.lock_file = self.sanctuary_dir / LOCK_FILENAME
        self._is_stale = is_stale or default_staleness()
        self._pid = pid if pid is not None else os.getpid()
        self._cleanup_attempts = cleanup_attempts
        self._cleanup_delay = cleanup_delay
        self._owned: str | None = None

    def _unique_sibling(self, tag: str) -> Path:
        return self.lock_file.with_name(f"{self.lock_file.name}.{tag}.{self._pid}.{threading.get_ident()}")

    def _read(self) -> str | None:
        try:
            return self.lock_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _try_create(self, operation: str) -> bool:
        now = datetime.now()
        info = LockInfo(
            process_id=self._pid,
            timestamp=now.isoformat(timespec="seconds"),
            operation=operation,
            created_ms=int(now.timestamp() * 1000),
        )
        text = info.to_text()
        self.sanctuary_dir.mkdir(parents=True, exist_ok=True)
        tmp = self._unique_sibling("tmp")
        tmp.write_text(text, encoding="utf-8")
        try:
            os.link(tmp, self.lock_file)
        except FileExistsError:
            return False
        finally:
            tmp.unlink(missing_ok=True)
        self._owned = text
        return True

    def _break_stale(self, observed: str) -> bool:
        """Remove a stale marker only if it is still the one judged stale."""

        tomb = self._unique_sibling("stale")
        for attempt in range(1, self._cleanup_attempts + 1):
            try:
                os.replace(self.lock_file, tomb)
            except FileNotFoundError:
                return True
            except OSError as e:
                logger.warning("could not remove stale lock (attempt %d): %s", attempt, e)
                time.sleep(self._cleanup_delay)
                continue
            if tomb.read_text(encoding="utf-8") != observed:
                # A fresh lock replaced the stale one in between; put it back.
                try:
                    os.link(tomb, self.lock_file)
                except FileExistsError:
                    pass
                tomb.unlink(missing_ok=True)
                return False
            tomb.unlink(missing_ok=True)
            return True
        raise StaleLockError(path=self.lock_file, attempts=self._cleanup_attempts)

    def acquire(self, operation: str) -> bool:
        """Take the lock without waiting. Returns False when someone else holds it."""

        if self._try_create(operation):
            return True
        observed = self._read()
        if observed is None:
            return self._try_create(operation)
        info = LockInfo.parse(observed)
        if not self._is_stale(info):
            return False
        logger.warning("removing stale lock held by process %d (%s)", info.process_id, info.operation)
        if not self._break_stale(observed):
            return False
        return self._try_create(operation)

    def release(self) -> None:
        if self._owned is None:
            return
        if self._read() == self._owned:
            self.lock_file.unlink(missing_ok=True)
        self._owned = None

    def is_locked(self) -> bool:
        return self.lock_file.exists()

    def lock_info(self) -> LockInfo | None:
        text = self._read()
        return LockInfo.parse(text) if text is not None else None

    def force_unlock(self) -> bool:
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            return False
        self._owned = None
        return True

    def with_lock(self, operation: str, action: Callable[[], T]) -> T:
        if not self.acquire(operation):
            raise LockContentionError(operation=operation, holder=self.lock_info())
        try:
            return action()
        finally:
            self.release()


class NoOpLock:
    """Lock stand-in used when locking is disabled (`--ignore-locks`)."""

    def __init__(self, sanctuary_dir: Path | None = None) -> None:
        self.sanctuary_dir = sanctuary_dir

    def acquire(self, operation: str) -> bool:
        return True

    def release(self) -> None:
        return None

    def is_locked(self) -> bool:
        return False

    def lock_info(self) -> LockInfo | None:
        return None

    def force_unlock(self) -> bool:
        return True

    def with_lock(self, operation: str, action: Callable[[], T]) -> T:
        return action()


def create_lock(sanctuary_dir: Path, *, use_locking: bool = True, is_stale: StalenessPolicy | None = None) -> SanctuaryLock | NoOpLock:
    if not use_locking:
        return NoOpLock(sanctuary_dir)
    return SanctuaryLock(sanctuary_dir, is_stale=is_stale)
