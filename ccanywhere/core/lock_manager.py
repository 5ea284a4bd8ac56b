"""
File Lock Manager

Single-host mutual exclusion for builds sharing one working directory.

State machine:
    unlocked → acquire() → locked → release | force_release | clean → unlocked

INVARIANTS:
    - At most one live (non-stale) LockRecord exists per lock file path
    - Creation links a fully written temp file into place; link() fails if
      the target exists, so there is no read-then-write window and readers
      never see a half-written record
    - A lock file is only ever removed as stale while holding the break
      guard (``<lock>.break``, created with O_EXCL), after re-reading it
      under the guard and confirming it is the same stale file
    - Staleness is decided by age only. The recorded pid is never checked for liveness
    - is_locked() never deletes anything
    - acquire() does not wait or retry; contention fails immediately

force_release() deletes unconditionally and does not check ownership.
Callers that need ownership checks must compare get_lock_info().pid first.
"""

import json
import logging
import os
import socket
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ccanywhere.errors import LockError
from ccanywhere.types import LockRecord, now_ms

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_LOCK_TIMEOUT = 300  # seconds
LOCK_SUFFIX = ".lock"
BREAK_GUARD_SUFFIX = ".break"
BREAK_GUARD_TIMEOUT = 30  # seconds; a guard older than this was abandoned


class FileLockManager:
    """Lock files holding a JSON LockRecord."""

    def __init__(self, default_timeout: int = DEFAULT_LOCK_TIMEOUT):
        self.default_timeout = default_timeout

    # =========================================================================
    # Acquire / Release
    # =========================================================================

    def acquire(
        self,
        lock_file: PathLike,
        timeout_seconds: Optional[int] = None,
        revision: Optional[str] = None,
    ) -> LockRecord:
        """
        Acquire the lock or raise LockError.

        A stale or unreadable record is removed under the break guard and
        the lock is taken over. A live record is left untouched.
        """
        path = Path(lock_file)
        timeout = timeout_seconds or self.default_timeout

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LockError(f"Failed to create lock directory {path.parent}: {e}") from e

        record = LockRecord(
            pid=os.getpid(),
            timestamp=now_ms(),
            revision=revision or os.environ.get("REVISION", "unknown"),
            hostname=socket.gethostname(),
            timeout=timeout,
        )

        # One takeover attempt: first try, then once more after clearing a stale record
        for _ in range(2):
            if self._create_exclusive(path, record):
                logger.info(f"Lock acquired: {path} (pid={record.pid}, revision={record.revision})")
                return record

            existing = self._read_record(path)
            if existing is not None and not existing.is_stale(self._timeout_for(existing, timeout)):
                raise LockError(
                    f"Build lock is held by pid {existing.pid} "
                    f"(revision {existing.revision}) at {path}",
                    details=existing.to_dict(),
                )

            try:
                reason = self._remove_if_stale(path, timeout)
            except OSError as e:
                raise LockError(f"Failed to remove stale lock {path}: {e}") from e
            if reason:
                logger.info(f"Removed stale lock {path} ({reason})")

        raise LockError(f"Failed to acquire lock {path}: lost race with another process")

    def release(self, lock_file: PathLike) -> None:
        """Delete the lock file. Missing file is fine."""
        path = Path(lock_file)
        existing = self._read_record(path)
        if existing is not None and existing.pid != os.getpid():
            logger.warning(f"Releasing lock owned by different process ({existing.pid}): {path}")
        try:
            path.unlink()
            logger.info(f"Lock released: {path}")
        except FileNotFoundError:
            logger.debug(f"Lock already released: {path}")

    def force_release(self, lock_file: PathLike) -> bool:
        """Delete the lock file regardless of owner or age. Returns True if removed."""
        path = Path(lock_file)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.warning(f"Force released lock: {path}")
        return True

    # =========================================================================
    # Inspection
    # =========================================================================

    def is_locked(self, lock_file: PathLike, timeout_seconds: Optional[int] = None) -> bool:
        """True only for an existing, readable, non-stale record."""
        record = self._read_record(Path(lock_file))
        if record is None:
            return False
        timeout = self._timeout_for(record, timeout_seconds or self.default_timeout)
        return not record.is_stale(timeout)

    def get_lock_info(self, lock_file: PathLike) -> Optional[LockRecord]:
        return self._read_record(Path(lock_file))

    def clean(self, lock_dir: PathLike, timeout_seconds: Optional[int] = None) -> List[Path]:
        """
        Remove stale and malformed lock files from a directory.

        Returns the paths that were removed.
        """
        directory = Path(lock_dir)
        if not directory.is_dir():
            return []

        default = timeout_seconds or self.default_timeout
        removed: List[Path] = []

        for path in sorted(directory.glob(f"*{LOCK_SUFFIX}")):
            try:
                reason = self._remove_if_stale(path, default)
            except OSError as e:
                logger.warning(f"Failed to remove lock {path}: {e}")
                continue
            if reason:
                removed.append(path)
                logger.info(f"Removed stale lock: {path.name} ({reason})")

        if removed:
            logger.info(f"Cleaned up {len(removed)} stale lock(s) in {directory}")
        return removed

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _timeout_for(record: LockRecord, fallback: int) -> int:
        return record.timeout or fallback

    @staticmethod
    def _create_exclusive(path: Path, record: LockRecord) -> bool:
        """Create the lock file atomically. False if it already exists."""
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        except OSError as e:
            raise LockError(f"Failed to create lock file {path}: {e}") from e

        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(record.to_dict(), indent=2))
            os.link(tmp, path)
        except FileExistsError:
            return False
        except OSError as e:
            raise LockError(f"Failed to create lock file {path}: {e}") from e
        finally:
            tmp.unlink(missing_ok=True)
        return True

    @staticmethod
    def _read_snapshot(path: Path) -> Tuple[Optional[LockRecord], Optional[int]]:
        """
        (record, inode) of the file at ``path``.

        inode is None when there is no readable file. record is None when
        the content is malformed.
        """
        try:
            with path.open("r", encoding="utf-8") as f:
                inode = os.fstat(f.fileno()).st_ino
                content = f.read()
        except FileNotFoundError:
            return None, None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read lock file {path}: {e}")
            return None, None
        try:
            return LockRecord.from_dict(json.loads(content)), inode
        except ValueError:
            return None, inode

    def _read_record(self, path: Path) -> Optional[LockRecord]:
        return self._read_snapshot(path)[0]

    def _remove_if_stale(self, path: Path, timeout: int) -> Optional[str]:
        """
        Delete ``path`` if it holds a stale or malformed record.

        Runs under the break guard so only one process decides at a time.
        The record is re-read under the guard and the file is unlinked only
        if it is still the same inode, so a lock created by a concurrent
        acquirer is never removed. Returns the removal reason, or None when
        nothing was removed.
        """
        guard = path.with_name(f"{path.name}{BREAK_GUARD_SUFFIX}")
        if not self._acquire_guard(guard):
            logger.debug(f"Stale lock takeover already in progress: {guard}")
            return None

        try:
            record, inode = self._read_snapshot(path)
            if inode is None:
                return None
            if record is not None:
                timeout = self._timeout_for(record, timeout)
                if not record.is_stale(timeout):
                    return None
                reason = f"age {record.age_ms() // 1000}s >= {timeout}s, pid {record.pid}"
            else:
                reason = "malformed"

            try:
                if os.stat(path).st_ino != inode:
                    return None
                path.unlink()
            except FileNotFoundError:
                return None
            return reason
        finally:
            guard.unlink(missing_ok=True)

    @staticmethod
    def _acquire_guard(guard: Path) -> bool:
        """Create the break guard with O_EXCL. An abandoned guard is cleared once."""
        for _ in range(2):
            try:
                fd = os.open(guard, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                try:
                    age = time.time() - guard.stat().st_mtime
                except FileNotFoundError:
                    continue
                if age < BREAK_GUARD_TIMEOUT:
                    return False
                logger.warning(f"Removing abandoned lock guard {guard} (age {int(age)}s)")
                guard.unlink(missing_ok=True)
                continue
            os.write(fd, str(os.getpid()).encode("ascii"))
            os.close(fd)
            return True
        return False
