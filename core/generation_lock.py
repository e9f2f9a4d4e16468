"""
generation_lock.py
-------------------
Per-user advisory lock around bill generation.

Two clearing runs for the same user that both read "2 unpaid bills" before
either writes could each pass the unpaid-cap guard and create a third
instance. Holding this lock for the whole run makes generation single-threaded
per user. Different users never block each other.
"""

import logging
import threading
from contextlib import contextmanager

from config.config_loader import get_locking_config
from core.errors import ConcurrentGenerationBlocked

logger = logging.getLogger(__name__)

_USE_DEFAULT = object()


class GenerationLock:
    """
    Registry of one mutex per user id. Only the acquiring thread may release.

    timeout semantics for acquire() / hold():
        0     : fail immediately if held
        > 0   : wait up to that many seconds
        None  : wait indefinitely
    Omitted, the locking.default_timeout_seconds config value applies.
    """

    def __init__(self, default_timeout=_USE_DEFAULT):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        # Threads holding or waiting on each user's lock. The entry is dropped at zero.
        self._refs: dict[str, int] = {}
        self._owners: dict[str, int] = {}
        if default_timeout is _USE_DEFAULT:
            default_timeout = get_locking_config().get("default_timeout_seconds", 0)
        self.default_timeout = default_timeout

    def _checkout(self, user_id: str) -> threading.Lock:
        with self._guard:
            self._refs[user_id] = self._refs.get(user_id, 0) + 1
            return self._locks.setdefault(user_id, threading.Lock())

    def _checkin(self, user_id: str) -> None:
        # Caller holds self._guard.
        self._refs[user_id] -= 1
        if self._refs[user_id] == 0:
            del self._refs[user_id]
            del self._locks[user_id]

    def acquire(self, user_id: str, timeout=_USE_DEFAULT) -> None:
        """
        Take the lock for user_id.

        Raises:
            ConcurrentGenerationBlocked: If the lock could not be taken in time.
        """
        if timeout is _USE_DEFAULT:
            timeout = self.default_timeout

        lock = self._checkout(user_id)
        if timeout is None:
            acquired = lock.acquire()
        elif timeout <= 0:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=timeout)

        with self._guard:
            if not acquired:
                self._checkin(user_id)
            else:
                self._owners[user_id] = threading.get_ident()
        if not acquired:
            raise ConcurrentGenerationBlocked(user_id)
        logger.debug(f"Generation lock acquired for user '{user_id}'.")

    def release(self, user_id: str) -> None:
        """
        Release the lock for user_id. Only the thread that acquired it may release it.

        Raises:
            RuntimeError: If the lock for user_id is not held by the calling thread.
        """
        with self._guard:
            owner = self._owners.get(user_id)
            if owner is None:
                raise RuntimeError(f"Generation lock for user '{user_id}' is not held")
            if owner != threading.get_ident():
                raise RuntimeError(f"Generation lock for user '{user_id}' is held by another thread")
            del self._owners[user_id]
            self._locks[user_id].release()
            self._checkin(user_id)
        logger.debug(f"Generation lock released for user '{user_id}'.")

    def is_held(self, user_id: str) -> bool:
        with self._guard:
            return user_id in self._owners

    def active_users(self) -> int:
        """Number of users with a lock entry (held or waited on)."""
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, user_id: str, timeout=_USE_DEFAULT):
        """Context-manager form of acquire()/release()."""
        self.acquire(user_id, timeout)
        try:
            yield self
        finally:
            self.release(user_id)


_SHARED_LOCK: GenerationLock | None = None


def get_shared_lock() -> GenerationLock:
    """Process-wide lock registry, shared by every pipeline that is not given its own."""
    global _SHARED_LOCK
    if _SHARED_LOCK is None:
        _SHARED_LOCK = GenerationLock()
    return _SHARED_LOCK
