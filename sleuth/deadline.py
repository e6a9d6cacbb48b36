"""Cancellable deadline shared by model calls and command execution."""

import time

from sleuth.errors import DeadlineExceeded


class Deadline:
    """A point in monotonic time after which a session must stop.

    ``timeout=None`` means no time limit; the deadline can still be
    cancelled explicitly.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def expired(self) -> bool:
        """Return True once the time limit has passed."""
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def done(self) -> bool:
        return self._cancelled or self.expired()

    def remaining(self) -> float | None:
        """Seconds left before expiry, ``None`` when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def check(self) -> None:
        """Raise DeadlineExceeded if the deadline is no longer usable."""
        if self._cancelled:
            raise DeadlineExceeded("session cancelled")
        if self.expired():
            raise DeadlineExceeded(f"session deadline of {self.timeout}s exceeded")
