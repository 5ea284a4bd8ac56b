"""
Unit Tests: FileLockManager

- acquire/is_locked/release round trip
- contention leaves the live record untouched
- stale and malformed records are taken over
- is_locked never deletes
- clean() removes only stale or malformed lock files
"""

import json
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from ccanywhere.core.lock_manager import FileLockManager
from ccanywhere.errors import LockError, PipelineStage
from ccanywhere.types import LockRecord, now_ms


@pytest.fixture
def manager():
    return FileLockManager(default_timeout=300)


@pytest.fixture
def lock_file(tmp_path):
    return tmp_path / "locks" / "main.lock"


def _write_record(path, pid=99999, age_seconds=0, revision="abc1234", timeout=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {"pid": pid, "timestamp": now_ms() - age_seconds * 1000, "revision": revision}
    if timeout is not None:
        data["timeout"] = timeout
    path.write_text(json.dumps(data))
    return data


class TestAcquire:

    def test_acquire_unheld_lock_then_is_locked(self, manager, lock_file):
        record = manager.acquire(lock_file, 300, revision="abc1234")

        assert record.pid == os.getpid()
        assert record.revision == "abc1234"
        assert manager.is_locked(lock_file) is True

        on_disk = json.loads(lock_file.read_text())
        assert on_disk["pid"] == os.getpid()
        assert on_disk["revision"] == "abc1234"
        assert on_disk["timeout"] == 300

    def test_acquire_creates_lock_directory(self, manager, tmp_path):
        lock_file = tmp_path / "a" / "b" / "main.lock"
        manager.acquire(lock_file)
        assert lock_file.exists()

    def test_acquire_held_lock_raises_and_keeps_record(self, manager, lock_file):
        original = _write_record(lock_file, pid=4242, age_seconds=10)
        before = lock_file.read_text()

        with pytest.raises(LockError) as exc_info:
            manager.acquire(lock_file, 300)

        assert "4242" in str(exc_info.value)
        assert exc_info.value.stage == PipelineStage.LOCK
        assert exc_info.value.details["pid"] == original["pid"]
        assert lock_file.read_text() == before

    def test_second_acquire_in_same_process_fails(self, manager, lock_file):
        manager.acquire(lock_file)
        with pytest.raises(LockError):
            manager.acquire(lock_file)

    def test_stale_lock_is_taken_over(self, manager, lock_file):
        _write_record(lock_file, pid=4242, age_seconds=600)

        record = manager.acquire(lock_file, 300, revision="new0001")

        assert record.pid == os.getpid()
        assert json.loads(lock_file.read_text())["revision"] == "new0001"
        assert [p.name for p in lock_file.parent.iterdir()] == ["main.lock"]

    def test_malformed_lock_is_taken_over(self, manager, lock_file):
        lock_file.parent.mkdir(parents=True)
        lock_file.write_text("{not json")

        record = manager.acquire(lock_file)

        assert record.pid == os.getpid()
        assert manager.is_locked(lock_file)

    def test_recorded_timeout_decides_staleness(self, manager, lock_file):
        # 100s old with its own 60s timeout: stale even though the caller uses 300
        _write_record(lock_file, age_seconds=100, timeout=60)
        record = manager.acquire(lock_file, 300)
        assert record.pid == os.getpid()

    def test_revision_defaults_to_env(self, manager, lock_file, monkeypatch):
        monkeypatch.setenv("REVISION", "envrev1")
        assert manager.acquire(lock_file).revision == "envrev1"

    def test_no_temp_files_left_behind(self, manager, lock_file):
        manager.acquire(lock_file)
        assert [p.name for p in lock_file.parent.iterdir()] == ["main.lock"]


class TestIsLocked:

    def test_missing_file_is_unlocked(self, manager, lock_file):
        assert manager.is_locked(lock_file) is False

    def test_expired_record_reported_unlocked_but_kept(self, manager, lock_file):
        _write_record(lock_file, age_seconds=301)

        assert manager.is_locked(lock_file) is False
        assert lock_file.exists()

    def test_malformed_record_reported_unlocked(self, manager, lock_file):
        lock_file.parent.mkdir(parents=True)
        lock_file.write_text(json.dumps({"pid": "not-a-pid"}))
        assert manager.is_locked(lock_file) is False

    def test_timeout_argument_used_without_recorded_timeout(self, manager, lock_file):
        _write_record(lock_file, age_seconds=30)
        assert manager.is_locked(lock_file, timeout_seconds=10) is False
        assert manager.is_locked(lock_file, timeout_seconds=60) is True


class TestRelease:

    def test_release_removes_file(self, manager, lock_file):
        manager.acquire(lock_file)
        manager.release(lock_file)
        assert not lock_file.exists()
        assert manager.is_locked(lock_file) is False

    def test_release_missing_file_does_not_raise(self, manager, lock_file):
        manager.release(lock_file)

    def test_release_foreign_lock_warns(self, manager, lock_file, caplog):
        _write_record(lock_file, pid=os.getpid() + 1)
        manager.release(lock_file)
        assert not lock_file.exists()
        assert "different process" in caplog.text

    def test_force_release_is_unconditional(self, manager, lock_file):
        _write_record(lock_file, pid=4242, age_seconds=1)
        assert manager.force_release(lock_file) is True
        assert not lock_file.exists()
        assert manager.force_release(lock_file) is False


class TestConcurrentTakeover:
    """Several acquirers racing on one stale lock file."""

    def test_late_takeover_keeps_fresh_lock(self, lock_file):
        _write_record(lock_file, age_seconds=600)
        a, b, c = FileLockManager(), FileLockManager(), FileLockManager()

        a.acquire(lock_file, revision="AAA")
        # b saw the stale record before a took over and only now clears it
        assert b._remove_if_stale(lock_file, 300) is None
        with pytest.raises(LockError):
            c.acquire(lock_file, revision="CCC")

        assert json.loads(lock_file.read_text())["revision"] == "AAA"

    def test_acquirer_during_takeover_loses(self, lock_file):
        _write_record(lock_file, age_seconds=600)
        a, b, c = FileLockManager(), FileLockManager(), FileLockManager()
        a.acquire(lock_file, revision="AAA")

        outcomes = []
        real_snapshot = b._read_snapshot

        def snapshot_with_intruder(path):
            try:
                outcomes.append(c.acquire(lock_file, revision="CCC"))
            except LockError as e:
                outcomes.append(e)
            return real_snapshot(path)

        b._read_snapshot = snapshot_with_intruder
        assert b._remove_if_stale(lock_file, 300) is None

        assert len(outcomes) == 1 and isinstance(outcomes[0], LockError)
        assert json.loads(lock_file.read_text())["revision"] == "AAA"

    def test_late_takeover_after_release_leaves_no_lock(self, lock_file):
        _write_record(lock_file, age_seconds=600)
        a, b = FileLockManager(), FileLockManager()

        a.acquire(lock_file, revision="AAA")
        a.release(lock_file)
        assert b._remove_if_stale(lock_file, 300) is None

        assert not lock_file.exists()
        assert b.is_locked(lock_file) is False

    def test_takeover_refused_while_guard_held(self, manager, lock_file):
        _write_record(lock_file, age_seconds=600, revision="old0001")
        guard = lock_file.with_name("main.lock.break")
        guard.write_text("12345")

        with pytest.raises(LockError):
            manager.acquire(lock_file, revision="new0001")

        assert json.loads(lock_file.read_text())["revision"] == "old0001"
        assert guard.exists()

    def test_abandoned_guard_is_cleared(self, manager, lock_file):
        _write_record(lock_file, age_seconds=600)
        guard = lock_file.with_name("main.lock.break")
        guard.write_text("12345")
        long_ago = time.time() - 3600
        os.utime(guard, (long_ago, long_ago))

        record = manager.acquire(lock_file, revision="new0001")

        assert record.revision == "new0001"
        assert not guard.exists()

    def test_threads_racing_on_stale_lock_have_one_winner(self, lock_file):
        _write_record(lock_file, age_seconds=600)
        barrier = threading.Barrier(8)

        def contend(i):
            barrier.wait()
            try:
                return FileLockManager().acquire(lock_file, revision=f"rev{i:04d}")
            except LockError:
                return None

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(contend, range(8)))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert json.loads(lock_file.read_text())["revision"] == winners[0].revision
        assert [p.name for p in lock_file.parent.iterdir()] == ["main.lock"]


class TestClean:

    def test_clean_removes_only_stale_and_malformed(self, manager, tmp_path):
        lock_dir = tmp_path / "locks"
        live = lock_dir / "live.lock"
        stale = lock_dir / "stale.lock"
        broken = lock_dir / "broken.lock"
        other = lock_dir / "notes.txt"

        _write_record(live, age_seconds=5)
        _write_record(stale, age_seconds=900)
        broken.write_text("garbage")
        other.write_text("not a lock")

        removed = manager.clean(lock_dir)

        assert sorted(p.name for p in removed) == ["broken.lock", "stale.lock"]
        assert live.exists()
        assert other.exists()

    def test_clean_missing_directory_returns_empty(self, manager, tmp_path):
        assert manager.clean(tmp_path / "nope") == []


class TestLockRecord:

    def test_from_dict_requires_pid_and_timestamp(self):
        with pytest.raises(ValueError):
            LockRecord.from_dict({"timestamp": 1})
        with pytest.raises(ValueError):
            LockRecord.from_dict({"pid": 1})
        with pytest.raises(ValueError):
            LockRecord.from_dict([1, 2])

    def test_minimal_record_defaults(self):
        record = LockRecord.from_dict({"pid": 12, "timestamp": 1000})
        assert record.revision == "unknown"
        assert record.timeout is None
        assert record.to_dict() == {"pid": 12, "timestamp": 1000, "revision": "unknown"}

    def test_is_stale_at_exact_timeout(self):
        record = LockRecord(pid=1, timestamp=0)
        assert record.is_stale(10, now=10_000) is True
        assert record.is_stale(10, now=9_999) is False
