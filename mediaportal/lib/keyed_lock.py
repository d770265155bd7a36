"""
Per-key mutual exclusion.

KeyedLock hands out one lock per key (job names), so unrelated keys never
serialize each other. LockStripes maps an unbounded keyspace (client IPs,
usernames) onto a fixed set of locks for short critical sections.
"""
import zlib
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, Set


class KeyedLock:
    """
    Registry of non-reentrant locks keyed by string.

    `try_acquire` never blocks, which is what the scheduler needs to turn
    contention into an "already running" answer instead of a queue.
    """

    def __init__(self):
        self._registry_lock = Lock()
        self._locks: Dict[str, Lock] = {}

    def _lock_for(self, key: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    def try_acquire(self, key: str) -> bool:
        """Acquire the lock for `key` if it is free. Returns False otherwise."""
        return self._lock_for(key).acquire(blocking=False)

    def release(self, key: str) -> None:
        """Release the lock for `key`. Raises RuntimeError if it is not held."""
        self._lock_for(key).release()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Block until the lock for `key` is free, then hold it."""
        lock = self._lock_for(key)
        with lock:
            yield

    def is_held(self, key: str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def held_keys(self) -> Set[str]:
        """Snapshot of keys whose lock is currently held."""
        with self._registry_lock:
            items = list(self._locks.items())
        return {key for key, lock in items if lock.locked()}


class LockStripes:
    """Fixed pool of locks selected by a stable hash of the key."""

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks = [Lock() for _ in range(stripes)]

    def lock_for(self, key: str) -> Lock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Block until the stripe owning `key` is free, then hold it."""
        lock = self.lock_for(key)
        with lock:
            yield
