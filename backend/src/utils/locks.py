"""
In-process keyed mutual exclusion for booking.

Database row locks serialize bookings across processes; this lock keeps
concurrent requests inside one process from piling up on the same rows and
gives every acquisition a bounded wait.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Iterator, List, Tuple

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """A keyed lock could not be acquired within the timeout."""


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLock:
    """
    Registry of one ``threading.Lock`` per key, created on demand.

    An entry lives only while some caller holds or waits for its lock, so
    the registry does not grow with every therapist and patient ever booked.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, _Entry] = {}

    def active_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _Entry()
                self._locks[key] = entry
            entry.users += 1
            return entry.lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def acquire_all(self, keys: Iterable[Hashable], timeout: float) -> Iterator[None]:
        """
        Hold the locks for every key for the duration of the block.

        Keys are acquired in sorted order so two callers locking the same
        pair can never deadlock.

        Raises:
            LockTimeout: If any lock is not acquired within ``timeout`` seconds
        """
        ordered = sorted(set(keys), key=repr)
        held: List[Tuple[Hashable, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=timeout):
                    self._checkin(key)
                    logger.warning(f"Timed out waiting for lock {key!r}")
                    raise LockTimeout(f"Timed out waiting for lock {key!r}")
                held.append((key, lock))
            yield
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)
