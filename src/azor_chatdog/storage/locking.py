"""Advisory locks for files rewritten in full.

Classes
-------
- FileLock  — serialises writers of one file, in-process and across processes
"""
from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS: float = 0.05

# A sentinel without a readable owner pid is considered abandoned after this.
_UNOWNED_STALE_SECONDS: float = 60.0

# One in-process lock per target path, shared by every FileLock on it.
_THREAD_LOCKS: dict[Path, threading.Lock] = {}
_THREAD_LOCKS_GUARD = threading.Lock()


def _thread_lock_for(path: Path) -> threading.Lock:
    with _THREAD_LOCKS_GUARD:
        lock = _THREAD_LOCKS.get(path)
        if lock is None:
            lock = _THREAD_LOCKS[path] = threading.Lock()
        return lock


def _process_alive(pid: int) -> bool:
    if os.name == "nt":
        # Signal 0 is CTRL_C_EVENT on Windows; treat the owner as alive.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class FileLock:
    """Exclusive lock on ``<target>.lock``.

    Threads of one process queue on a shared ``threading.Lock``; other
    processes are excluded by atomically creating the sentinel file, which
    records the owner's pid.  A sentinel left behind by a process that no
    longer exists is removed and the lock taken over.

    Parameters
    ----------
    target:
        The file being protected.  The sentinel lives next to it.
    timeout:
        Seconds to wait before raising :class:`TimeoutError`.
    """

    def __init__(self, target: str | Path, timeout: float = 10.0) -> None:
        self._target = Path(target).resolve()
        self._lock_path = self._target.with_name(self._target.name + ".lock")
        self._timeout = timeout
        self._thread_lock = _thread_lock_for(self._target)
        self._fd: int | None = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def acquire(self) -> None:
        """Block until both locks are held.

        Raises
        ------
        TimeoutError
            If the lock cannot be acquired within the timeout.
        """
        deadline = time.monotonic() + self._timeout
        if not self._thread_lock.acquire(timeout=self._timeout):
            raise TimeoutError(f"Could not acquire lock {self._lock_path} within {self._timeout}s")
        try:
            while True:
                try:
                    fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                except FileExistsError:
                    if self._reclaim_if_stale():
                        continue
                    if time.monotonic() >= deadline:
                        raise TimeoutError(
                            f"Could not acquire lock {self._lock_path} within {self._timeout}s"
                        ) from None
                    time.sleep(_POLL_INTERVAL_SECONDS)
                    continue
                self._fd = fd
                os.write(fd, str(os.getpid()).encode("ascii"))
                return
        except BaseException:
            if self._fd is not None:
                self._drop_sentinel()
            self._thread_lock.release()
            raise

    def release(self) -> None:
        """Release the lock.  Safe to call when the lock is not held."""
        if self._fd is None:
            return
        try:
            self._drop_sentinel()
        finally:
            self._thread_lock.release()

    def _drop_sentinel(self) -> None:
        os.close(self._fd)
        self._fd = None
        try:
            self._lock_path.unlink()
        except FileNotFoundError:
            pass

    def _reclaim_if_stale(self) -> bool:
        """Remove the sentinel if its owner is gone.  True means retry now."""
        try:
            owner = self._lock_path.read_text(encoding="ascii", errors="replace").strip()
            age = time.time() - self._lock_path.stat().st_mtime
        except FileNotFoundError:
            return True
        if owner.isdigit():
            if _process_alive(int(owner)):
                return False
        elif age < _UNOWNED_STALE_SECONDS:
            return False
        logger.warning(
            "Removing stale lock %s (owner %s)", self._lock_path, owner or "unknown"
        )
        try:
            self._lock_path.unlink()
        except FileNotFoundError:
            pass
        return True

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.release()
