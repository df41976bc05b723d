"""Cancellation context passed through a load

A `Context` is shared by everything working on behalf of one operation.
Cancelling it, or letting its deadline pass, signals every fetch to stop.
"""
from __future__ import annotations

import threading
import time

from pyuor.errors import CancellationError


class Context:
    def __init__(self, timeout: float | None = None, parent: Context | None = None):
        self._event = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout
        self._parent = parent
        self.cause: str | None = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cancel("context closed")

    @property
    def deadline(self) -> float | None:
        """Earliest monotonic deadline of this context and its parents"""
        deadlines = [
            d
            for d in (
                self._deadline,
                self._parent.deadline if self._parent is not None else None,
            )
            if d is not None
        ]
        return min(deadlines) if deadlines else None

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._parent is not None and self._parent.cancelled:
            return True
        deadline = self.deadline
        return deadline is not None and time.monotonic() >= deadline

    def cancel(self, cause: str = "context cancelled"):
        if not self._event.is_set():
            self.cause = cause
            self._event.set()

    def remaining(self) -> float | None:
        """Seconds until the deadline, None when there is no deadline"""
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def reason(self) -> str:
        if self._event.is_set():
            return self.cause or "context cancelled"
        if self._parent is not None and self._parent.cancelled:
            return self._parent.reason()
        return "context deadline exceeded"

    def raise_if_cancelled(self, digest: str | None = None):
        if self.cancelled:
            raise CancellationError(self.reason(), digest=digest)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or `timeout` seconds passed, return `cancelled`"""
        end = None if timeout is None else time.monotonic() + timeout
        while not self.cancelled:
            step = 0.05
            remaining = self.remaining()
            if remaining is not None:
                step = min(step, remaining)
            if end is not None:
                left = end - time.monotonic()
                if left <= 0:
                    break
                step = min(step, left)
            self._event.wait(step)
        return self.cancelled

    def child(self, timeout: float | None = None) -> Context:
        """Derive a context that is cancelled together with this one"""
        return Context(timeout=timeout, parent=self)


def background() -> Context:
    """A context that is never cancelled unless asked to"""
    return Context()
