"""
Tests for run cancellation.

Tests key functionality including:
- CancelToken cancel/deadline semantics
- Early wake-up of waits
- SignalCanceller handler installation and return codes
"""

import os
import signal
import threading
import time

import pytest

from testrig.cancel import CancelToken, SignalCanceller
from testrig.exceptions import RunCancelledError

# =============================================================================
# Test CancelToken
# =============================================================================


@pytest.mark.unit
class TestCancelToken:
    """Test CancelToken."""

    def test_initial_state(self):
        """Test a fresh token is not cancelled."""
        token = CancelToken()
        assert token.is_cancelled() is False
        assert token.reason is None
        assert token.remaining() is None

    def test_cancel_keeps_first_reason(self):
        """Test later cancel() calls keep the first reason."""
        token = CancelToken()
        token.cancel("received SIGINT")
        token.cancel("second")
        assert token.is_cancelled() is True
        assert token.reason == "received SIGINT"

    def test_deadline_expires(self):
        """Test the token counts as cancelled once the deadline passes."""
        token = CancelToken(deadline=0.0)
        assert token.is_cancelled() is True
        assert token.reason == "deadline exceeded"
        assert token.remaining() == 0.0

    def test_wait_returns_false_when_not_cancelled(self):
        """Test wait() times out normally."""
        token = CancelToken()
        assert token.wait(0.01) is False

    def test_wait_wakes_on_cancel(self):
        """Test a wait ends early when another thread cancels."""
        token = CancelToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        started = time.monotonic()
        try:
            assert token.wait(5.0) is True
        finally:
            timer.cancel()
        assert time.monotonic() - started < 2.0

    def test_wait_is_bounded_by_deadline(self):
        """Test a wait never outlasts the deadline."""
        token = CancelToken(deadline=0.05)
        started = time.monotonic()
        assert token.wait(5.0) is True
        assert time.monotonic() - started < 2.0

    def test_raise_if_cancelled(self):
        """Test raise_if_cancelled raises only after cancellation."""
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel("stop")
        with pytest.raises(RunCancelledError, match="stop"):
            token.raise_if_cancelled()


# =============================================================================
# Test SignalCanceller
# =============================================================================


@pytest.mark.unit
class TestSignalCanceller:
    """Test SignalCanceller."""

    def test_restores_handlers(self):
        """Test original handlers are restored on exit."""
        original = signal.getsignal(signal.SIGTERM)
        with SignalCanceller(CancelToken()):
            assert signal.getsignal(signal.SIGTERM) is not original
        assert signal.getsignal(signal.SIGTERM) is original

    def test_sigterm_cancels_token(self):
        """Test SIGTERM cancels the token with return code 143."""
        token = CancelToken()
        with SignalCanceller(token) as sc:
            os.kill(os.getpid(), signal.SIGTERM)
            token.wait(1.0)
        assert sc.signalled is True
        assert sc.return_code == 143
        assert token.reason == "received SIGTERM"

    def test_sigint_return_code(self):
        """Test SIGINT maps to 130."""
        token = CancelToken()
        with SignalCanceller(token) as sc:
            sc._handle_signal(signal.SIGINT, None)
        assert sc.return_code == 130
        assert token.is_cancelled()
