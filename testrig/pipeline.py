"""
Pipeline state machine.

Coordinates one run: provisions every dependency concurrently, waits for
the readiness gate, installs the system under test, runs the tiers in
declared order and aggregates their results into a Report. TEARING_DOWN is
the single exit path and runs whatever happened before it.

    IDLE -> PROVISIONING -> AWAITING_READINESS -> INSTALLING -> RUNNING_TIERS
         -> TEARING_DOWN -> SUCCEEDED | FAILED | ABORTED

Any phase before RUNNING_TIERS may jump straight to TEARING_DOWN, which
then ends in ABORTED.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from .cancel import CancelToken
from .exceptions import (
    InstallError,
    PipelineStateError,
    ProvisionError,
    ReadinessTimeoutError,
    RunCancelledError,
    TeardownWarning,
)
from .gate import GateResult, ReadinessGate
from .hooks import HookEvent, PipelineHooks
from .installer import InstalledSystem, Installer
from .log import Logger, LoggerFactory
from .report import Report, RunStatus
from .service import DependencyState, ServiceDependency
from .tier import TestTier, TierResult, TierRunner


class PipelinePhase(Enum):
    """Phases of a pipeline run."""

    IDLE = "idle"
    PROVISIONING = "provisioning"
    AWAITING_READINESS = "awaiting_readiness"
    INSTALLING = "installing"
    RUNNING_TIERS = "running_tiers"
    TEARING_DOWN = "tearing_down"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


_TRANSITIONS: dict[PipelinePhase, frozenset[PipelinePhase]] = {
    PipelinePhase.IDLE: frozenset({PipelinePhase.PROVISIONING}),
    PipelinePhase.PROVISIONING: frozenset(
        {PipelinePhase.AWAITING_READINESS, PipelinePhase.TEARING_DOWN}
    ),
    PipelinePhase.AWAITING_READINESS: frozenset(
        {PipelinePhase.INSTALLING, PipelinePhase.TEARING_DOWN}
    ),
    PipelinePhase.INSTALLING: frozenset(
        {PipelinePhase.RUNNING_TIERS, PipelinePhase.TEARING_DOWN}
    ),
    PipelinePhase.RUNNING_TIERS: frozenset({PipelinePhase.TEARING_DOWN}),
    PipelinePhase.TEARING_DOWN: frozenset(
        {PipelinePhase.SUCCEEDED, PipelinePhase.FAILED, PipelinePhase.ABORTED}
    ),
    PipelinePhase.SUCCEEDED: frozenset(),
    PipelinePhase.FAILED: frozenset(),
    PipelinePhase.ABORTED: frozenset(),
}

_TERMINAL = {
    RunStatus.SUCCEEDED: PipelinePhase.SUCCEEDED,
    RunStatus.FAILED: PipelinePhase.FAILED,
    RunStatus.ABORTED: PipelinePhase.ABORTED,
}


class GatePolicy(Enum):
    """
    Which dependencies the readiness gate requires.

    STRICT requires every dependency not flagged optional. SCHEDULED also
    treats browser dependencies as optional when no scheduled tier needs
    the browser.
    """

    STRICT = "strict"
    SCHEDULED = "scheduled"


class Pipeline:
    """
    One pipeline run over a fixed set of dependencies and tiers.

    A Pipeline instance is single-use: run() may be called once.

    Example:
        pipeline = Pipeline(lg, [db, grid], installer, tiers, deadline=120.0)
        report = pipeline.run(cancel=token)
        sys.exit(report.exit_code)
    """

    def __init__(
        self,
        lg: Logger,
        dependencies: Sequence[ServiceDependency],
        installer: Installer,
        tiers: Sequence[TestTier],
        runner: TierRunner | None = None,
        gate: ReadinessGate | None = None,
        deadline: float | None = None,
        policy: GatePolicy = GatePolicy.STRICT,
        hooks: PipelineHooks | None = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            lg: Parent logger; components derive their own loggers from it
            dependencies: Service dependencies, unique by name
            installer: Installer for the system under test
            tiers: Tiers in the order they must run, unique by name
            runner: Tier runner (default: one without artifacts dir)
            gate: Readiness gate (default: ReadinessGate(lg))
            deadline: Seconds allowed for the readiness gate
            policy: Which dependencies the gate requires
            hooks: Callbacks for pipeline events
        """
        _check_unique("dependency", [d.name for d in dependencies])
        _check_unique("tier", [t.name for t in tiers])

        self._lg = LoggerFactory.derive(lg, "pipeline")
        self.dependencies = list(dependencies)
        self.installer = installer
        self.tiers = list(tiers)
        self.runner = runner or TierRunner(lg)
        self.gate = gate or ReadinessGate(lg)
        self.deadline = deadline
        self.policy = policy
        self.hooks = hooks or PipelineHooks()

        self._phase = PipelinePhase.IDLE
        self.report: Report | None = None

    @property
    def phase(self) -> PipelinePhase:
        return self._phase

    def _transition(self, phase: PipelinePhase) -> None:
        if phase not in _TRANSITIONS[self._phase]:
            raise PipelineStateError(
                "invalid transition", src=self._phase.value, dst=phase.value
            )
        self._lg.debug(
            "phase change", extra={"from": self._phase.value, "to": phase.value}
        )
        self._phase = phase
        if self.report is not None:
            self.report.phases.append(phase.value)
        self.hooks.trigger(HookEvent.PHASE_CHANGE, phase=phase.value)

    def run(self, cancel: CancelToken | None = None) -> Report:
        """
        Execute the run and return its report.

        Aborting errors (provisioning, readiness, installation) and
        cancellation are recorded in the report, not raised. Teardown runs
        in every case, including unexpected errors, which propagate after it.

        Raises:
            PipelineStateError: If the pipeline has already run
        """
        if self._phase is not PipelinePhase.IDLE:
            raise PipelineStateError("pipeline already run", phase=self._phase.value)

        cancel = cancel or CancelToken()
        report = self.report = Report()
        self.hooks.trigger(HookEvent.RUN_START)
        self._transition(PipelinePhase.PROVISIONING)

        try:
            self._provision(cancel)
            self._transition(PipelinePhase.AWAITING_READINESS)
            self._await_readiness(cancel)
            self._transition(PipelinePhase.INSTALLING)
            system = self._install(cancel)
            self._transition(PipelinePhase.RUNNING_TIERS)
            report.reached_tiers = True
            self._run_tiers(system, cancel)
        except RunCancelledError as e:
            report.cancelled = True
            if not report.reached_tiers:
                report.abort_reason = f"cancelled: {e.message}"
            self._lg.warning(
                "run cancelled", extra={"phase": self._phase.value, "reason": e.message}
            )
        except (ProvisionError, ReadinessTimeoutError, InstallError) as e:
            report.abort_reason = str(e)
            self._lg.error(
                "run aborted", extra={"phase": self._phase.value, "reason": str(e)}
            )
        finally:
            self._transition(PipelinePhase.TEARING_DOWN)
            self._teardown(report)
            report.dependencies = [d.describe() for d in self.dependencies]
            status = report.finalize()
            self._transition(_TERMINAL[status])
            self._lg.info(
                "run finished",
                extra={"status": status.value, "after": report.duration, **report.totals()},
            )
            self.hooks.trigger(
                HookEvent.RUN_END, status=status.value, duration=report.duration
            )
        return report

    def _provision(self, cancel: CancelToken) -> None:
        """Start every dependency concurrently and wait for the calls to return."""
        cancel.raise_if_cancelled()
        if not self.dependencies:
            return

        with ThreadPoolExecutor(
            max_workers=len(self.dependencies), thread_name_prefix="provision"
        ) as pool:
            futures = [pool.submit(self._start, dep) for dep in self.dependencies]
            errors = [f.exception() for f in futures]

        failures = [e for e in errors if e is not None]
        if failures:
            first = failures[0]
            if isinstance(first, ProvisionError):
                raise first
            raise ProvisionError(f"start failed: {first}") from first
        cancel.raise_if_cancelled()

    def _start(self, dep: ServiceDependency) -> None:
        try:
            address = dep.start()
        except ProvisionError as e:
            self._lg.error("dependency start failed", extra={"name": dep.name, "error": str(e)})
            raise
        except Exception as e:
            dep.mark_failed(str(e))
            self._lg.error("dependency start failed", extra={"name": dep.name, "error": str(e)})
            raise ProvisionError(f"cannot start: {e}", name=dep.name) from e
        self._lg.info(
            "dependency started",
            extra={"name": dep.name, "host": address.host, "port": address.port},
        )
        self.hooks.trigger(HookEvent.DEPENDENCY_STARTED, dependency=dep.name)

    def optional_dependencies(self) -> set[str]:
        """Dependencies the gate tolerates being unhealthy under the policy."""
        optional = {d.name for d in self.dependencies if d.optional}
        if self.policy is GatePolicy.SCHEDULED and not any(
            t.requires_browser for t in self.tiers
        ):
            optional.update(d.name for d in self.dependencies if d.is_browser)
        return optional

    def _await_readiness(self, cancel: CancelToken) -> GateResult:
        result = self.gate.wait(
            self.dependencies,
            deadline=self.deadline,
            cancel=cancel,
            optional=self.optional_dependencies(),
        )
        self.hooks.trigger(
            HookEvent.GATE_PASSED, healthy=result.healthy, unavailable=result.unhealthy
        )
        return result

    def _install(self, cancel: CancelToken) -> InstalledSystem:
        self.hooks.trigger(HookEvent.INSTALL_START)
        try:
            result = self.installer.install(self.dependencies, cancel=cancel)
        except BaseException as e:
            self.hooks.trigger(HookEvent.INSTALL_END, status="failed", error=e)
            raise
        self.hooks.trigger(
            HookEvent.INSTALL_END,
            status="installed",
            duration=result.duration,
            attempts=result.attempts,
        )
        return result.system

    def browser_available(self) -> bool:
        """True if some browser dependency reached HEALTHY."""
        return any(
            d.is_browser and d.state is DependencyState.HEALTHY
            for d in self.dependencies
        )

    def _run_tiers(self, system: InstalledSystem, cancel: CancelToken) -> None:
        assert self.report is not None
        browser = self.browser_available()

        for index, tier in enumerate(self.tiers):
            if cancel.is_cancelled():
                self._skip_remaining(index, cancel)
                raise RunCancelledError(cancel.reason or "cancelled", phase="tiers")

            self.hooks.trigger(HookEvent.TIER_START, tier=tier.name)
            try:
                result = self.runner.run(tier, system, browser_available=browser, cancel=cancel)
            except RunCancelledError:
                self._skip_remaining(index, cancel)
                raise
            self.report.add_tier(result)
            self.hooks.trigger(
                HookEvent.TIER_END,
                tier=tier.name,
                duration=result.duration,
                passed=result.passed,
                failed=result.failed,
                skipped=result.skipped,
            )

    def _skip_remaining(self, start: int, cancel: CancelToken) -> None:
        assert self.report is not None
        reason = f"run cancelled: {cancel.reason or 'cancelled'}"
        for tier in self.tiers[start:]:
            self.report.add_tier(TierResult.skipped_tier(tier.name, reason))

    def _teardown(self, report: Report) -> None:
        """Stop every started dependency once, in reverse order."""
        for dep in reversed(self.dependencies):
            if not dep.started:
                continue
            try:
                if dep.stop():
                    self.hooks.trigger(HookEvent.DEPENDENCY_STOPPED, dependency=dep.name)
            except Exception as e:
                warning = TeardownWarning(dep.name, e)
                self._lg.warning(
                    "teardown failed", extra={"name": dep.name, "error": str(e)}
                )
                report.teardown_warnings.append(str(warning))
                self.hooks.trigger(
                    HookEvent.TEARDOWN_WARNING, dependency=dep.name, error=warning
                )


def _check_unique(kind: str, names: list[str]) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"duplicate {kind} name: {name}")
        seen.add(name)
