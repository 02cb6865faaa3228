"""
Cancellation for pipeline runs.

A CancelToken is shared by every phase of a run. Suspension points (probe
poll waits, the installer retry wait, tier boundaries) wait on the token
instead of sleeping, so a cancellation or an expired deadline is observed
immediately.
"""

from __future__ import annotations

import signal
import threading
import time
from types import FrameType
from typing import Any

from .exceptions import RunCancelledError


class CancelToken:
    """
    Cancellation signal with an optional absolute deadline.

    Example:
        token = CancelToken(deadline=300.0)
        while not token.wait(1.0):
            poll()
    """

    def __init__(self, deadline: float | None = None) -> None:
        """
        Initialize the token.

        Args:
            deadline: Seconds from now after which the token counts as
                cancelled (None for no deadline)
        """
        self._event = threading.Event()
        self._reason: str | None = None
        self._expires_at = time.monotonic() + deadline if deadline is not None else None

    @property
    def reason(self) -> str | None:
        """Why the token was cancelled, if it was."""
        if self._reason is None and self._expired():
            return "deadline exceeded"
        return self._reason

    def _expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Later calls keep the first reason."""
        if self._reason is None:
            self._reason = reason
        self._event.set()

    def is_cancelled(self) -> bool:
        """True once cancel() was called or the deadline has passed."""
        return self._event.is_set() or self._expired()

    def remaining(self) -> float | None:
        """Seconds until the deadline (None without a deadline)."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def wait(self, secs: float) -> bool:
        """
        Wait up to secs seconds, returning early on cancellation.

        Returns:
            True if the token is cancelled when the wait ends
        """
        remaining = self.remaining()
        if remaining is not None:
            secs = min(secs, remaining)
        if secs > 0:
            self._event.wait(secs)
        return self.is_cancelled()

    def raise_if_cancelled(self) -> None:
        """
        Raise RunCancelledError if cancellation was requested.

        Raises:
            RunCancelledError: If the token is cancelled
        """
        if self.is_cancelled():
            raise RunCancelledError(self.reason or "cancelled")


class SignalCanceller:
    """
    Cancels a token on SIGINT/SIGTERM.

    The first signal cancels the token and lets the pipeline tear down;
    the return code reflects the signal (130 for SIGINT, 143 for SIGTERM).

    Usage:
        with SignalCanceller(token) as sc:
            report = pipeline.run(token)
        if sc.signalled:
            return sc.return_code
    """

    def __init__(self, token: CancelToken) -> None:
        self._token = token
        self._original: dict[signal.Signals, Any] = {}
        self.signalled = False
        self.return_code = 130

    def __enter__(self) -> SignalCanceller:
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._original[sig] = signal.signal(sig, self._handle_signal)
        return self

    def __exit__(self, *args: object) -> None:
        for sig, handler in self._original.items():
            signal.signal(sig, handler)
        self._original.clear()

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        if self.signalled:
            return  # Ignore duplicate signals
        self.signalled = True
        self.return_code = 130 if signum == signal.SIGINT else 143
        self._token.cancel(f"received {signal.Signals(signum).name}")
