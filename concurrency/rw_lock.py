"""
MiniDoc Readers/Writer Lock
===========================
One lock per collection.

Design rules:
  - Many concurrent readers OR one writer
  - Writer preference: once a writer waits, new readers queue behind it
    (starvation prevention)
  - The write lock is re-entrant for its owner thread, and the owner may
    also take the read lock (nested reads inside a mutation)
  - Upgrading a held read lock to write is refused (LockUpgradeError);
    two upgrading readers would otherwise wait on each other forever
  - Every acquire waits at most `timeout` seconds (LockTimeoutError)

Thread safety: all state guarded by one threading.Condition.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Optional

from storage.errors import EngineError


class LockTimeoutError(EngineError):
    """Lock not acquired within the timeout."""
    pass


class LockUpgradeError(EngineError):
    """A thread holding the read lock asked for the write lock."""
    pass


class ReadWriteLock:
    """
    Readers/writer lock with writer preference and bounded waits.

    Usage:
        lock = ReadWriteLock(timeout=5.0)
        with lock.read_locked():
            ...
        with lock.write_locked():
            ...
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._cond = threading.Condition(threading.Lock())
        self._readers: Dict[int, int] = {}     # thread id → read depth
        self._writer: Optional[int] = None     # owning thread id
        self._write_depth = 0
        self._waiting_writers = 0

    # ─── Public API ──────────────────────────────────────────────────────

    def acquire_read(self, timeout: Optional[float] = None) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me or me in self._readers:
                # Nested read: never blocks (would deadlock behind waiting writers)
                self._readers[me] = self._readers.get(me, 0) + 1
                return
            self._wait_for(
                lambda: self._writer is None and self._waiting_writers == 0,
                timeout, "read",
            )
            self._readers[me] = 1

    def release_read(self) -> None:
        me = threading.get_ident()
        with self._cond:
            depth = self._readers.get(me)
            if not depth:
                raise RuntimeError("release_read() without a matching acquire_read()")
            if depth == 1:
                del self._readers[me]
            else:
                self._readers[me] = depth - 1
            self._cond.notify_all()

    def acquire_write(self, timeout: Optional[float] = None) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._write_depth += 1
                return
            if me in self._readers:
                raise LockUpgradeError("Cannot upgrade a read lock to a write lock")
            self._waiting_writers += 1
            try:
                self._wait_for(
                    lambda: self._writer is None and not self._readers,
                    timeout, "write",
                )
            finally:
                self._waiting_writers -= 1
                # Readers blocked only by this waiting writer may proceed now
                self._cond.notify_all()
            self._writer = me
            self._write_depth = 1

    def release_write(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer != me:
                raise RuntimeError("release_write() by a thread that does not own the lock")
            self._write_depth -= 1
            if self._write_depth == 0:
                self._writer = None
                self._cond.notify_all()

    @contextmanager
    def read_locked(self, timeout: Optional[float] = None):
        self.acquire_read(timeout)
        try:
            yield self
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self, timeout: Optional[float] = None):
        self.acquire_write(timeout)
        try:
            yield self
        finally:
            self.release_write()

    # ─── Introspection (tests, debugging) ────────────────────────────────

    @property
    def reader_count(self) -> int:
        with self._cond:
            return len(self._readers)

    @property
    def write_held(self) -> bool:
        with self._cond:
            return self._writer is not None

    # ─── Internal ────────────────────────────────────────────────────────

    def _wait_for(self, ready, timeout: Optional[float], mode: str) -> None:
        """Wait on the condition until ready() holds. Caller holds _cond."""
        limit = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + limit
        while not ready():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockTimeoutError(f"Timed out after {limit:.2f}s waiting for {mode} lock")
            self._cond.wait(remaining)
