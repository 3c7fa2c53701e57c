# src/cache/locking.py — v1
"""Per-key advisory locks shared by threads, tasks and processes.

Each reservation opens its own ``filelock.FileLock`` on the key's lock
file, so two operations exclude each other even inside one process. A
logical operation that already holds a key (tracked in a context
variable, inherited by the tasks and worker threads it spawns) re-enters
it without blocking.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from pathlib import Path
from types import TracebackType

from filelock import FileLock, Timeout

from cratevault.errors import LockTimeout

logger = logging.getLogger(__name__)

_held_locks: contextvars.ContextVar[dict[str, ScopedLock] | None] = contextvars.ContextVar(
    "cratevault_held_locks", default=None
)


class ScopedLock:
    """Exclusive reservation of one cache key.

    Usable as a sync or async context manager. The lock is released on
    normal exit, on error and on cancellation.
    """

    def __init__(
        self,
        lock_path: Path,
        label: str,
        timeout: float = 60.0,
        poll_interval: float = 0.1,
    ) -> None:
        self._lock_path = lock_path
        self._label = label
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._lock: FileLock | None = None
        self._token: contextvars.Token | None = None
        self._reentered = False

    @property
    def label(self) -> str:
        return self._label

    @property
    def is_held(self) -> bool:
        if self._reentered:
            return True
        return self._lock is not None and self._lock.is_locked

    # --- sync ---

    def __enter__(self) -> ScopedLock:
        if self._enter_reentrant():
            return self
        lock = self._new_lock()
        self._acquire(lock)
        self._mark_held(lock)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._release()

    # --- async ---

    async def __aenter__(self) -> ScopedLock:
        if self._enter_reentrant():
            return self
        lock = self._new_lock()
        acquiring = asyncio.ensure_future(asyncio.to_thread(self._acquire, lock))
        try:
            await asyncio.shield(acquiring)
        except asyncio.CancelledError:
            # The worker thread may still win the lock after we give up.
            acquiring.add_done_callback(lambda f: _release_if_acquired(f, lock))
            raise
        self._mark_held(lock)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._release()

    # --- internals ---

    def _enter_reentrant(self) -> bool:
        held = _held_locks.get() or {}
        if self._label in held:
            self._reentered = True
            logger.debug("Re-entering lock %s", self._label)
            return True
        return False

    def _new_lock(self) -> FileLock:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(self._lock_path), timeout=self._timeout, thread_local=False)

    def _acquire(self, lock: FileLock) -> None:
        try:
            lock.acquire(timeout=self._timeout, poll_interval=self._poll_interval)
        except Timeout as e:
            raise LockTimeout(
                f"Timed out after {self._timeout:g}s waiting for lock on {self._label}",
                detail={"key": self._label, "lock_file": str(self._lock_path)},
            ) from e
        logger.debug("Acquired lock %s", self._label)

    def _mark_held(self, lock: FileLock) -> None:
        self._lock = lock
        held = dict(_held_locks.get() or {})
        held[self._label] = self
        self._token = _held_locks.set(held)

    def _release(self) -> None:
        if self._reentered:
            self._reentered = False
            return
        if self._token is not None:
            try:
                _held_locks.reset(self._token)
            except ValueError:
                # Token created in another context (exit ran elsewhere).
                held = dict(_held_locks.get() or {})
                held.pop(self._label, None)
                _held_locks.set(held)
            self._token = None
        if self._lock is not None:
            self._lock.release()
            self._lock = None
            logger.debug("Released lock %s", self._label)


def _release_if_acquired(future: asyncio.Future, lock: FileLock) -> None:
    if not future.cancelled() and future.exception() is None:
        lock.release()
