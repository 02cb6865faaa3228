"""
Exception hierarchy for testrig.

Errors at or above the readiness gate / installer boundary abort the run
(teardown still happens). Failures below the tier boundary are recorded in
the report as CaseFailure entries and never raised.
"""

from collections.abc import Iterable
from typing import Any


class TestrigError(Exception):
    """
    Base exception for all testrig errors.

    Example:
        try:
            report = pipeline.run()
        except TestrigError as e:
            lg.error("pipeline error", extra={"exception": e})
    """

    __test__ = False  # keep pytest from collecting Test* classes

    def __init__(self, message: str, **context: Any) -> None:
        """
        Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error message
            **context: Additional context information (stored in self.context)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """String representation with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ConfigError(TestrigError):
    """
    Configuration-related errors.

    Examples:
        - Pipeline file not found
        - Invalid YAML syntax
        - Schema validation failed
        - Unresolvable ${variable} reference
    """

    pass


class ProvisionError(TestrigError):
    """
    A service dependency could not be launched.

    Fatal: aborts the run.

    Examples:
        - Executable or container image missing
        - Permission denied
        - Configured port already in use
    """

    pass


class ReadinessTimeoutError(TestrigError):
    """
    One or more dependencies never became healthy before the deadline.

    Fatal: aborts the run. Names every still-unhealthy dependency.
    """

    def __init__(self, unhealthy: Iterable[str], **context: Any) -> None:
        self.unhealthy = list(unhealthy)
        super().__init__(
            f"dependencies not healthy: {', '.join(self.unhealthy)}", **context
        )


class InstallError(TestrigError):
    """Base class for system-under-test installation failures."""

    pass


class TransientInstallError(InstallError):
    """
    Installation failed in a way that may succeed on retry.

    Retried once automatically (e.g. connection reset by the database).
    """

    pass


class FatalInstallError(InstallError):
    """
    Installation or feature enabling failed permanently.

    Aborts the run without retry.
    """

    pass


class PipelineStateError(TestrigError):
    """Raised on an invalid pipeline state transition."""

    pass


class RunCancelledError(TestrigError):
    """Raised at a suspension point once cancellation has been requested."""

    pass


class TeardownWarning(RuntimeWarning):
    """
    A dependency failed to stop cleanly.

    Logged and recorded in the report, never raised, and never changes the
    run's pass/fail outcome.
    """

    def __init__(self, dependency: str, error: BaseException) -> None:
        self.dependency = dependency
        self.error = error
        super().__init__(f"teardown of '{dependency}' failed: {error}")
