"""
RequestLockRegistry: in-process mutual exclusion per request and vehicle.

Responsibility:
    Serializes operations on the same request (and, for assignments, the same
    vehicle) inside one process.  The BrokerageEngine acquires the lock before
    it opens a session and releases it after commit, so a waiting caller
    always reads the winner's committed state.

Invariants enforced:
    - Lock order is always request, then vehicle.  No other lock is taken
      while one of these is held.
    - Entries are reference counted and dropped when the last holder leaves.

Cross-process writers are covered by the request version counter and the
vehicle compare-and-swap, not by this registry.
"""

import threading
from contextlib import ExitStack, contextmanager
from typing import Any, Iterator


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class RequestLockRegistry:
    """Named locks for ``request:<id>`` and ``vehicle:<id>`` keys."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def _hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.holders += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]

    @contextmanager
    def hold(self, request_id: Any = None, vehicle_id: Any = None) -> Iterator[None]:
        """Hold the request lock and, if given, the vehicle lock."""
        with ExitStack() as stack:
            if request_id is not None:
                stack.enter_context(self._hold(f"request:{request_id}"))
            if vehicle_id is not None:
                stack.enter_context(self._hold(f"vehicle:{vehicle_id}"))
            yield

    def active_keys(self) -> list[str]:
        with self._guard:
            return sorted(self._entries)
