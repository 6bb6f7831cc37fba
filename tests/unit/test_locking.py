"""Unit tests for azor_chatdog.storage.locking and azor_chatdog.storage.files."""
from __future__ import annotations

import os
import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

from azor_chatdog.storage.files import write_text_atomic
from azor_chatdog.storage.locking import FileLock


def _finished_pid() -> int:
    """Pid of a child process that has already exited."""
    child = subprocess.Popen([sys.executable, "-c", ""])
    child.wait()
    return child.pid


class TestFileLock:
    def test_sentinel_exists_while_held(self, tmp_path: Path) -> None:
        target = tmp_path / "log.json"
        with FileLock(target) as lock:
            assert lock.lock_path.exists()
        assert not lock.lock_path.exists()

    def test_release_is_idempotent(self, tmp_path: Path) -> None:
        lock = FileLock(tmp_path / "log.json")
        lock.acquire()
        lock.release()
        lock.release()

    def test_sentinel_records_owner_pid(self, tmp_path: Path) -> None:
        with FileLock(tmp_path / "log.json") as lock:
            assert lock.lock_path.read_text() == str(os.getpid())

    def test_live_owner_times_out(self, tmp_path: Path) -> None:
        target = tmp_path / "log.json"
        sentinel = tmp_path / "log.json.lock"
        sentinel.write_text(str(os.getpid()))
        with pytest.raises(TimeoutError):
            FileLock(target, timeout=0.1).acquire()
        assert sentinel.exists()

    @pytest.mark.skipif(os.name == "nt", reason="owner liveness is not checked on Windows")
    def test_sentinel_of_dead_process_is_reclaimed(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        target = tmp_path / "log.json"
        sentinel = tmp_path / "log.json.lock"
        sentinel.write_text(str(_finished_pid()))
        with FileLock(target, timeout=0.1) as lock:
            assert lock.lock_path.read_text() == str(os.getpid())
        assert not sentinel.exists()
        assert "Removing stale lock" in caplog.text

    def test_old_unowned_sentinel_is_reclaimed(self, tmp_path: Path) -> None:
        target = tmp_path / "log.json"
        sentinel = tmp_path / "log.json.lock"
        sentinel.write_text("")
        an_hour_ago = time.time() - 3600
        os.utime(sentinel, (an_hour_ago, an_hour_ago))
        with FileLock(target, timeout=0.1):
            pass

    def test_fresh_unowned_sentinel_times_out(self, tmp_path: Path) -> None:
        target = tmp_path / "log.json"
        (tmp_path / "log.json.lock").write_text("")
        with pytest.raises(TimeoutError):
            FileLock(target, timeout=0.1).acquire()

    def test_lock_can_be_reacquired_after_timeout(self, tmp_path: Path) -> None:
        target = tmp_path / "log.json"
        sentinel = tmp_path / "log.json.lock"
        sentinel.write_text("")
        with pytest.raises(TimeoutError):
            FileLock(target, timeout=0.1).acquire()
        sentinel.unlink()
        with FileLock(target, timeout=0.1):
            pass

    def test_threads_are_serialised(self, tmp_path: Path) -> None:
        target = tmp_path / "counter.txt"
        target.write_text("0")

        def bump() -> None:
            for _ in range(20):
                with FileLock(target):
                    value = int(target.read_text())
                    target.write_text(str(value + 1))

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert target.read_text() == "80"


class TestWriteTextAtomic:
    def test_replaces_content(self, tmp_path: Path) -> None:
        path = tmp_path / "file.json"
        path.write_text("old")
        write_text_atomic(path, "new")
        assert path.read_text() == "new"

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        path = tmp_path / "file.json"
        write_text_atomic(path, "content")
        assert [p.name for p in tmp_path.iterdir()] == ["file.json"]

    def test_missing_directory_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "missing-dir" / "file.json"
        with pytest.raises(OSError):
            write_text_atomic(path, "content")
        assert not path.exists()
