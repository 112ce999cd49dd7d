"""
NUDGE Path Lock - Per-Resource Mutual Exclusion

Serializes read-modify-write cycles on the same file within one process.
Callers for a busy key block until the holder finishes; nobody is rejected.

Scope:
- In-process only. A second OS process writing the same file is NOT
  excluded; multi-instance deployments need a real cross-process lock.
"""

import logging
import os
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
LockKey = Union[str, "os.PathLike[str]"]


class _KeyEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        # Re-entrant so a holder can call helpers that lock the same key
        self.lock = threading.RLock()
        self.users = 0


class PathLock:
    """
    Map of key -> lock, created on demand and dropped when unused.

    Usage:
        lock = PathLock()
        result = lock.with_lock(path, lambda: read_modify_write(path))

        with lock.hold(path):
            ...
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _KeyEntry] = {}

    @staticmethod
    def _normalize(key: LockKey) -> str:
        if isinstance(key, os.PathLike):
            return os.path.abspath(os.fspath(key))
        return str(key)

    @contextmanager
    def hold(self, key: LockKey) -> Iterator[None]:
        """Hold the lock for key for the duration of the with-block."""
        name = self._normalize(key)

        with self._guard:
            entry = self._entries.get(name)
            if entry is None:
                entry = _KeyEntry()
                self._entries[name] = entry
            entry.users += 1
            waiting = entry.users > 1

        if waiting:
            logger.debug(f"Waiting for lock: {name}")

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[name]

    def with_lock(self, key: LockKey, operation: Callable[[], T]) -> T:
        """
        Run operation while holding the lock for key.

        The lock is released even if operation raises; the exception
        propagates to the caller.
        """
        with self.hold(key):
            return operation()

    def is_held(self, key: LockKey) -> bool:
        """True while any caller holds or waits for key."""
        with self._guard:
            return self._normalize(key) in self._entries


# Shared instance for stores that are not handed their own lock
default_lock = PathLock()
