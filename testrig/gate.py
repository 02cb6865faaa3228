"""
Readiness gate.

Polls every dependency's probe concurrently, one worker per dependency, at a
fixed interval (no backoff) until the dependency is healthy, its probe runs
out of attempts, the deadline passes, or the run is cancelled. The gate
succeeds only when every required dependency is healthy.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Collection, Sequence
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from .cancel import CancelToken
from .exceptions import ReadinessTimeoutError, RunCancelledError
from .log import Logger, LoggerFactory
from .probe import ServiceAddress
from .service import DependencyState, ServiceDependency

# Upper bound on how long the gate sleeps before rechecking cancellation.
WAKEUP_INTERVAL = 0.1


@dataclass
class PollOutcome:
    """Result of polling one dependency."""

    name: str
    healthy: bool
    attempts: int
    elapsed: float
    reason: str | None = None


@dataclass
class GateResult:
    """Result of one readiness evaluation."""

    outcomes: dict[str, PollOutcome] = field(default_factory=dict)

    @property
    def healthy(self) -> list[str]:
        return [name for name, o in self.outcomes.items() if o.healthy]

    @property
    def unhealthy(self) -> list[str]:
        return [name for name, o in self.outcomes.items() if not o.healthy]

    def attempts(self, name: str) -> int:
        return self.outcomes[name].attempts


class ReadinessGate:
    """
    Gates installation until dependencies report healthy.

    Example:
        gate = ReadinessGate(lg)
        result = gate.wait(dependencies, deadline=120.0, cancel=token)
    """

    def __init__(self, lg: Logger) -> None:
        self._lg = LoggerFactory.derive(lg, "gate")

    def wait(
        self,
        dependencies: Sequence[ServiceDependency],
        deadline: float | None = None,
        cancel: CancelToken | None = None,
        optional: Collection[str] = (),
    ) -> GateResult:
        """
        Poll all dependencies until healthy or out of time.

        Args:
            dependencies: Dependencies to evaluate (optional ones included)
            deadline: Seconds allowed for the whole evaluation (None for
                no limit beyond each probe's max_attempts)
            cancel: Run cancellation token
            optional: Names of dependencies treated as optional for this
                evaluation in addition to those flagged optional

        Returns:
            GateResult with one outcome per dependency

        Raises:
            ReadinessTimeoutError: If any required dependency is unhealthy;
                names every unhealthy dependency
            RunCancelledError: If the run was cancelled while polling
        """
        cancel = cancel or CancelToken()
        expires_at = time.monotonic() + deadline if deadline is not None else None
        result = GateResult()

        if not dependencies:
            return result

        self._lg.info(
            "awaiting readiness",
            extra={"dependencies": [d.name for d in dependencies], "deadline": deadline},
        )
        started = time.monotonic()
        abandoned = threading.Event()
        progress: dict[str, int] = {dep.name: 0 for dep in dependencies}
        outcomes: dict[str, PollOutcome] = {}

        # A blocking probe check must not hold the gate past its deadline,
        # so the pool is never joined: unfinished polls are abandoned.
        pool = ThreadPoolExecutor(max_workers=len(dependencies), thread_name_prefix="gate")
        try:
            futures = {
                pool.submit(self._poll, dep, expires_at, cancel, abandoned, progress): dep
                for dep in dependencies
            }
            pending = set(futures)
            while pending:
                if cancel.is_cancelled():
                    break
                timeout = WAKEUP_INTERVAL
                if expires_at is not None:
                    remaining = expires_at - time.monotonic()
                    if remaining <= 0:
                        break
                    timeout = min(timeout, remaining)
                done, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                for future in done:
                    outcome = future.result()
                    outcomes[outcome.name] = outcome
        finally:
            abandoned.set()
            pool.shutdown(wait=False, cancel_futures=True)

        for future in pending:
            dep = futures[future]
            if future.done() and not future.cancelled():
                outcome = future.result()
                if not outcome.healthy:
                    dep.mark_failed(outcome.reason)
                outcomes[dep.name] = outcome
                continue
            reason = "cancelled" if cancel.is_cancelled() else "deadline exceeded"
            dep.mark_failed(reason)
            self._lg.warning(
                "dependency not healthy",
                extra={"name": dep.name, "reason": reason, "abandoned": True},
            )
            outcomes[dep.name] = PollOutcome(
                dep.name, False, progress[dep.name], time.monotonic() - started, reason
            )

        for dep in dependencies:
            result.outcomes[dep.name] = outcomes[dep.name]

        if cancel.is_cancelled():
            raise RunCancelledError(cancel.reason or "cancelled", phase="readiness")

        required_failures = [
            dep.name
            for dep in dependencies
            if not (dep.optional or dep.name in optional)
            and not result.outcomes[dep.name].healthy
        ]
        if required_failures:
            raise ReadinessTimeoutError(result.unhealthy, deadline=deadline)

        for name in result.unhealthy:
            self._lg.warning("optional dependency unavailable", extra={"name": name})
        return result

    def _poll(
        self,
        dep: ServiceDependency,
        expires_at: float | None,
        cancel: CancelToken,
        abandoned: threading.Event,
        progress: dict[str, int],
    ) -> PollOutcome:
        """
        Poll one dependency; runs on a gate worker thread.

        Once the gate has abandoned this poll its outcome is discarded and
        the dependency state is left to the gate.
        """
        probe = dep.probe
        started = time.monotonic()
        address = dep.address
        attempts = 0
        reason = "max attempts reached"

        while attempts < probe.max_attempts:
            if cancel.is_cancelled():
                reason = "cancelled"
                break
            if expires_at is not None and time.monotonic() >= expires_at:
                reason = "deadline exceeded"
                break

            code = dep.exit_code()
            if code is not None:
                reason = f"process exited with {code}"
                break

            attempts += 1
            progress[dep.name] = attempts
            if self._check(dep, address, attempts):
                if abandoned.is_set():
                    break
                dep.mark_healthy()
                elapsed = time.monotonic() - started
                self._lg.info(
                    "dependency healthy",
                    extra={"name": dep.name, "attempts": attempts, "after": elapsed},
                )
                return PollOutcome(dep.name, True, attempts, elapsed)

            if attempts >= probe.max_attempts:
                break
            pause = probe.interval
            if expires_at is not None:
                pause = min(pause, max(0.0, expires_at - time.monotonic()))
            cancel.wait(pause)

        elapsed = time.monotonic() - started
        if abandoned.is_set():
            return PollOutcome(dep.name, False, attempts, elapsed, reason)
        if dep.state is not DependencyState.HEALTHY:
            dep.mark_failed(reason)
        self._lg.warning(
            "dependency not healthy",
            extra={"name": dep.name, "attempts": attempts, "reason": reason},
        )
        return PollOutcome(dep.name, False, attempts, elapsed, reason)

    def _check(
        self, dep: ServiceDependency, address: ServiceAddress, attempt: int
    ) -> bool:
        try:
            healthy = dep.probe.check(address)
        except Exception as e:
            self._lg.trace(
                "probe raised",
                extra={"name": dep.name, "attempt": attempt, "error": str(e)},
            )
            return False
        self._lg.trace(
            "probe attempt",
            extra={
                "name": dep.name,
                "attempt": attempt,
                "healthy": healthy,
            },
        )
        return healthy
