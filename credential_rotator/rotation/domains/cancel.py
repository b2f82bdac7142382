"""Cancellation signal shared by one rotation invocation."""
import threading
import time
from typing import Any, Callable, List, Optional

from .errors import CancelledError


class CancelToken:
    """
    Cooperative cancellation with an optional deadline.

    Every suspension point (slot acquisition, retry waits, replication polls)
    checks the token; nothing is interrupted mid-call.
    """

    def __init__(self, deadline: Optional[float] = None):
        # deadline is a time.monotonic() value
        self._deadline = deadline
        self._event = threading.Event()
        self._reason = "cancelled"
        self._listeners: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        return cls(deadline=time.monotonic() + seconds)

    @classmethod
    def from_lambda_context(cls, context: Any, margin_seconds: float = 1.0) -> "CancelToken":
        """
        Derive a token from an AWS Lambda context object.

        The deadline is the remaining invocation time less a margin so in-flight
        work can drain and the error can be reported before Lambda kills the process.
        """
        if context is None or not hasattr(context, "get_remaining_time_in_millis"):
            return cls()
        remaining = context.get_remaining_time_in_millis() / 1000.0
        return cls.with_timeout(max(remaining - margin_seconds, 0.0))

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener()

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """
        Call listener whenever cancel() is called. Returns a function that removes it.

        Deadline expiry does not call listeners; waiters bound their waits by remaining.
        """
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = "deadline exceeded"
            self._event.set()
            return True
        return False

    @property
    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds. Returns True if cancelled before or during the sleep."""
        if self.cancelled:
            return True
        if seconds > 0:
            remaining = self.remaining
            if remaining is not None and remaining < seconds:
                self._event.wait(remaining)
            else:
                self._event.wait(seconds)
        return self.cancelled

    def error(self) -> CancelledError:
        return CancelledError(self._reason)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self.error()
