"""
Process-wide mutual exclusion keyed by (owner, asset).

Serializes lot closes and opportunity upserts for one pair across every
engine instance in the process. Cross-process safety comes from the database
(row locks on the open-lot set, the partial unique index on pending
opportunities).
"""
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLocks:
    """Registry of re-entrant locks created on first use per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = defaultdict(threading.RLock)

    def get(self, key: Hashable) -> threading.RLock:
        with self._guard:
            return self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield


lot_set_locks = KeyedLocks()
opportunity_locks = KeyedLocks()
