"""Cancellation and deadline signal threaded through every operation."""
import threading
import time
from typing import Optional

from .errors import Cancelled, DeadlineExceeded


class CallContext:
    """
    Cancellation/deadline signal for one top-level operation.

    A context is done once cancel() is called or its deadline passes.
    cancel() is safe to call from another thread.
    """

    def __init__(self, deadline: Optional[float] = None):
        # Deadline is a time.monotonic() timestamp
        self._deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def background(cls) -> "CallContext":
        """Context that is never done unless cancelled."""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CallContext":
        return cls(deadline=time.monotonic() + seconds)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def cancel(self) -> None:
        self._cancelled.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def _expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def done(self) -> bool:
        return self._cancelled.is_set() or self._expired()

    def error(self) -> Optional[Cancelled]:
        """
        Error describing why the context is done.

        Returns:
            Cancelled or DeadlineExceeded, or None if the context is still live
        """
        if self._cancelled.is_set():
            return Cancelled("context canceled")
        if self._expired():
            return DeadlineExceeded("context deadline exceeded")
        return None

    def raise_if_done(self) -> None:
        error = self.error()
        if error is not None:
            raise error

    def wait(self, seconds: float) -> bool:
        """
        Sleep for up to `seconds`, waking early when the context finishes.

        Returns:
            True if the context finished before the full wait elapsed
        """
        remaining = self.remaining()
        if remaining is not None and remaining <= seconds:
            # The deadline lands inside the wait
            while not self.done():
                self._cancelled.wait(self.remaining())
            return True
        return self._cancelled.wait(seconds)
