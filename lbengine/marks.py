"""Allocation of firewall marks from a fixed pool."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Iterator

# Marks used for firewall-mark based vservers.
FWM_ALLOC_BASE = 1 << 8
FWM_ALLOC_SIZE = 8000

# Marks used for DSR and TUN mode healthchecks.
DSR_MARK_BASE = 1 << 16
DSR_MARK_SIZE = 16000


class AllocatorExhausted(LookupError):
    """No marks are left in the allocator."""


class MarkAllocator:
    """A thread-safe first-in, first-out pool of marks."""

    def __init__(self, base: int, size: int):
        if size < 0:
            raise ValueError(f"size must not be negative, got {size}")
        self._lock = threading.Lock()
        self._marks: Deque[int] = deque(range(base, base + size))

    def get(self) -> int:
        """Take the next available mark from the pool."""
        with self._lock:
            if not self._marks:
                raise AllocatorExhausted("allocator exhausted")
            return self._marks.popleft()

    def put(self, mark: int) -> None:
        """Return a mark to the end of the pool."""
        with self._lock:
            self._marks.append(mark)

    def __len__(self) -> int:
        with self._lock:
            return len(self._marks)

    def __iter__(self) -> Iterator[int]:
        with self._lock:
            return iter(list(self._marks))