"""Single-slot, latest-value-wins handoff between threads."""

from __future__ import annotations

import threading
import time
from typing import Generic, TypeVar

T = TypeVar("T")


class LatestValueChannel(Generic[T]):
    """
    Holds at most one value. publish() overwrites any value not yet taken,
    receive() takes the value and empties the slot.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._value: T | None = None
        self._has_value = False
        self._closed = False
        self.published_count = 0
        self.dropped_count = 0

    def publish(self, value: T) -> None:
        with self._cond:
            if self._closed:
                return
            if self._has_value:
                self.dropped_count += 1
            self._value = value
            self._has_value = True
            self.published_count += 1
            self._cond.notify_all()

    def receive(self, timeout: float | None = None) -> T | None:
        """Wait for a value. Returns None on timeout or once the channel is closed."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._has_value and not self._closed:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)
            if not self._has_value:
                return None
            value = self._value
            self._value = None
            self._has_value = False
            return value

    def close(self) -> None:
        """Wake every waiter; later publishes are ignored."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed
