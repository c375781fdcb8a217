from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from types import TracebackType

from filelock import FileLock, Timeout

from .errors import IOFailure, LockTimeout

logger = logging.getLogger(__name__)


class PathLockRegistry:
    """
    Provides a stable lock per normalized file path to avoid global contention.

    Threads of one process queue on this lock; other processes are excluded by
    the file lock taken after it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, path: Path) -> threading.Lock:
        key = str(path.resolve())
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


GLOBAL_PATH_LOCKS = PathLockRegistry()


class ExclusiveLock:
    """
    Exclusive, cross-thread and cross-process lock on ``<document>.lock``.

    Acquisition makes at most ``attempts`` attempts, each waiting up to
    ``wait_seconds``. An optional ``deadline`` (seconds from the acquire call)
    caps the total wait. Running out of either raises LockTimeout with nothing held.
    """

    def __init__(
        self,
        lock_path: Path,
        *,
        attempts: int,
        wait_seconds: float,
        deadline: float | None = None,
        document_id: str | None = None,
        registry: PathLockRegistry = GLOBAL_PATH_LOCKS,
    ) -> None:
        self._lock_path = lock_path
        self._attempts = max(1, int(attempts))
        self._wait = max(0.0, float(wait_seconds))
        self._deadline = deadline
        self._document_id = document_id
        self._thread_lock = registry.lock_for(lock_path)
        self._file_lock: FileLock | None = None
        self._held = False

    def acquire(self, deadline: float | None = None) -> None:
        if self._held:
            raise RuntimeError(f"lock {self._lock_path} already held by this handle")
        if deadline is None:
            deadline = self._deadline
        try:
            self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"cannot create lock directory for {self._lock_path}: {e}", document_id=self._document_id) from e
        end = None if deadline is None else time.monotonic() + max(0.0, deadline)
        file_lock = FileLock(str(self._lock_path))
        have_thread_lock = False
        attempts = 0

        try:
            while attempts < self._attempts:
                wait = self._wait
                if end is not None:
                    remaining = end - time.monotonic()
                    if remaining <= 0:
                        break
                    wait = min(wait, remaining)
                attempts += 1

                if not have_thread_lock:
                    have_thread_lock = self._thread_lock.acquire(timeout=wait)
                    if not have_thread_lock:
                        continue

                try:
                    file_lock.acquire(timeout=0)
                except Timeout:
                    logger.debug("Lock busy: %s (attempt %d/%d)", self._lock_path, attempts, self._attempts)
                    time.sleep(wait)
                    continue
                except OSError as e:
                    raise IOFailure(f"cannot open lock file {self._lock_path}: {e}", document_id=self._document_id) from e

                self._file_lock = file_lock
                self._held = True
                logger.debug("Lock acquired: %s after %d attempt(s)", self._lock_path, attempts)
                return
        except BaseException:
            if have_thread_lock:
                self._thread_lock.release()
            raise

        if have_thread_lock:
            self._thread_lock.release()
        raise LockTimeout(
            f"could not acquire lock {self._lock_path} after {attempts} attempt(s)",
            document_id=self._document_id,
            attempts=attempts,
        )

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            if self._file_lock is not None:
                self._file_lock.release()
        finally:
            self._file_lock = None
            self._thread_lock.release()
            logger.debug("Lock released: %s", self._lock_path)

    def __enter__(self) -> "ExclusiveLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
