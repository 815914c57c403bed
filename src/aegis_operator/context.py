"""Per-reconcile deadline and cancellation token."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from aegis_operator.errors import ReconcileCancelled


@dataclass
class ReconcileContext:
    """Deadline plus shared stop signal, threaded through every external call.

    Callers invoke ``check()`` between steps and pass ``timeout(cap)`` to each
    blocking call so no single request outlives the reconcile deadline.
    """

    deadline: float
    stop_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def with_timeout(cls, seconds: float, stop_event: threading.Event | None = None) -> ReconcileContext:
        return cls(deadline=time.monotonic() + seconds, stop_event=stop_event or threading.Event())

    @classmethod
    def background(cls) -> ReconcileContext:
        """Context with no practical deadline (tests, one-off CLI runs)."""
        return cls(deadline=float("inf"))

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set() or self.remaining() <= 0

    def check(self) -> None:
        """Raise ReconcileCancelled if the cycle must stop now."""
        if self.stop_event.is_set():
            raise ReconcileCancelled("operator is shutting down")
        if self.remaining() <= 0:
            raise ReconcileCancelled("reconcile deadline exceeded")

    def timeout(self, cap: float) -> float:
        """Per-call timeout: the remaining budget, never more than cap."""
        self.check()
        return max(0.001, min(cap, self.remaining()))
