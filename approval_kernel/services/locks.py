"""
approval_kernel.services.locks -- Per-request mutual exclusion.

Every state-changing call on one request runs under that request's lock,
so transitions on a request are applied one at a time while different
requests proceed in parallel.  A lock lives only while some caller holds
or waits on it; the registry is empty whenever no request is in flight.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class RequestLockRegistry:
    """In-process registry of one ``threading.Lock`` per in-flight request id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[UUID, _Entry] = {}

    @contextmanager
    def hold(self, request_id: UUID) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(request_id)
            if entry is None:
                entry = _Entry()
                self._entries[request_id] = entry
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[request_id]

    def is_held(self, request_id: UUID) -> bool:
        with self._guard:
            entry = self._entries.get(request_id)
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
