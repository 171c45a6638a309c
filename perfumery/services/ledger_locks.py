"""
Per-key locking for ledger mutations.

Writers to the same ledger key (branch_id, product_id) are serialized;
writers to unrelated keys never wait on each other. Operations touching
several keys (transfers, manufacturing completion, multi-line sales)
acquire all of them up front in one fixed global order, so two transfers
crossing the same branches in opposite directions cannot deadlock.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, List


class KeyedLockRegistry:
    """
    Registry of one lock per key, created on first use.

    Locks are never discarded: the key space (branches x products) is small
    and bounded, and dropping a lock another thread is about to take would
    break mutual exclusion. Locks are reentrant so a composite operation
    that already holds its keys can call the single-key primitives.
    """

    def __init__(self):
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @staticmethod
    def ordered(keys: Iterable[Hashable]) -> List[Hashable]:
        """Deduplicate keys and sort them into the global acquisition order."""
        return sorted(set(keys))

    @contextmanager
    def hold(self, *keys: Hashable):
        """
        Hold the locks for every given key for the duration of the block.

        Args:
            *keys: Ledger keys; duplicates are ignored

        Yields:
            The keys in acquisition order
        """
        ordered_keys = self.ordered(keys)
        acquired = []
        try:
            for key in ordered_keys:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield ordered_keys
        finally:
            for lock in reversed(acquired):
                lock.release()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)


# Shared by every ledger writer in the process
ledger_locks = KeyedLockRegistry()

# Serializes completion attempts per manufacturing order
order_locks = KeyedLockRegistry()

# Serializes order number allocation per UTC day
order_number_locks = KeyedLockRegistry()
