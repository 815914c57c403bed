"""Keyed work queue with per-key serialization and delayed re-adds."""

from __future__ import annotations

import heapq
import threading
import time
from collections import deque


class WorkQueue:
    """Thread-safe queue of resource keys.

    * A key handed out by get() is not handed out again until done() is called
      for it, so one resource is never reconciled by two workers at once.
    * Adding a key that is already queued is a no-op; adding a key that is
      being processed re-queues it once processing finishes.
    * add_after() keeps at most one pending delayed add per key (the earliest).
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._waiting: dict[str, float] = {}
        self._heap: list[tuple[float, str]] = []
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, key: str) -> None:
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = time.monotonic() + delay
            existing = self._waiting.get(key)
            if existing is not None and existing <= ready_at:
                return
            self._waiting[key] = ready_at
            heapq.heappush(self._heap, (ready_at, key))
            self._cond.notify_all()

    def forget(self, key: str) -> None:
        """Drop any pending delayed add for key (the resource was deleted)."""
        with self._cond:
            self._waiting.pop(key, None)

    def _promote_ready_locked(self) -> float | None:
        """Move due delayed keys into the queue; return seconds until the next one."""
        now = time.monotonic()
        while self._heap:
            ready_at, key = self._heap[0]
            if self._waiting.get(key) != ready_at:
                heapq.heappop(self._heap)
                continue
            if ready_at > now:
                return ready_at - now
            heapq.heappop(self._heap)
            del self._waiting[key]
            self._add_locked(key)
        return None

    def get(self, timeout: float | None = None) -> str | None:
        """Block for the next key; None on shutdown or timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                next_delayed = self._promote_ready_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutting_down:
                    return None
                waits = [w for w in (next_delayed,) if w is not None]
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    waits.append(remaining)
                self._cond.wait(min(waits) if waits else None)

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
