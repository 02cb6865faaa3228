"""
System-under-test installation.

The installer hands the install procedure an explicit InstallContext built
from the healthy dependencies (database URL, every bound address, SUT
settings) instead of relying on ambient environment variables. A transient
failure is retried once after a cancellable delay; anything else aborts the
run. Feature enabling follows a successful install and is fatal on failure.
"""

from __future__ import annotations

import os
import re
import subprocess
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .cancel import CancelToken
from .exceptions import (
    FatalInstallError,
    PipelineStateError,
    RunCancelledError,
    TransientInstallError,
)
from .log import Logger, LoggerFactory
from .probe import ServiceAddress
from .service import DependencyRole, DependencyState, ServiceDependency

# Output patterns classifying a failed install command as transient
DEFAULT_TRANSIENT_PATTERNS = (
    r"connection reset",
    r"connection refused",
    r"could not connect",
    r"server closed the connection",
    r"temporarily unavailable",
)

# EX_TEMPFAIL from sysexits.h
DEFAULT_TRANSIENT_EXIT_CODES = (75,)


def _env_key(name: str) -> str:
    return re.sub(r"[^A-Z0-9]+", "_", name.upper()).strip("_")


@dataclass(frozen=True)
class InstallContext:
    """Everything the install procedure may use, passed explicitly."""

    addresses: Mapping[str, ServiceAddress]
    database_url: str | None = None
    browser_url: str | None = None
    settings: Mapping[str, Any] = field(default_factory=dict)
    workdir: Path | None = None

    def env(self) -> dict[str, str]:
        """
        Environment variables describing this context.

        Meant to be merged into the env= of a subprocess, never into the
        current process environment.
        """
        env: dict[str, str] = {}
        if self.database_url:
            env["TESTRIG_DATABASE_URL"] = self.database_url
        if self.browser_url:
            env["TESTRIG_BROWSER_URL"] = self.browser_url
        for name, address in self.addresses.items():
            key = _env_key(name)
            env[f"TESTRIG_{key}_HOST"] = address.host
            if address.port is not None:
                env[f"TESTRIG_{key}_PORT"] = str(address.port)
            if address.url:
                env[f"TESTRIG_{key}_URL"] = address.url
        for key, value in self.settings.items():
            env[f"TESTRIG_SUT_{_env_key(key)}"] = str(value)
        return env


@dataclass
class InstalledSystem:
    """Opaque handle to the installed system plus how to reach it."""

    context: InstallContext
    handle: Any = None
    base_url: str | None = None
    features: list[str] = field(default_factory=list)

    def env(self) -> dict[str, str]:
        """Environment for tier executors (see InstallContext.env)."""
        env = self.context.env()
        if self.base_url:
            env["TESTRIG_BASE_URL"] = self.base_url
        if self.features:
            env["TESTRIG_FEATURES"] = ",".join(self.features)
        return env


@dataclass
class InstallResult:
    """Outcome of a successful installation."""

    system: InstalledSystem
    attempts: int
    duration: float


InstallProcedure = Callable[[InstallContext], Any]
FeatureProcedure = Callable[[InstalledSystem, str], None]


class Installer:
    """
    Invokes the install procedure once per pipeline run.

    Example:
        installer = Installer(lg, install=my_install, features=["search"],
                              enable_feature=my_enable)
        result = installer.install(dependencies, cancel=token)
    """

    def __init__(
        self,
        lg: Logger,
        install: InstallProcedure,
        enable_feature: FeatureProcedure | None = None,
        features: Iterable[str] = (),
        retry_delay: float = 5.0,
        settings: Mapping[str, Any] | None = None,
        base_url: str | None = None,
        workdir: Path | None = None,
    ) -> None:
        """
        Initialize the installer.

        Args:
            lg: Parent logger
            install: Procedure taking an InstallContext; may return an
                InstalledSystem or any opaque handle
            enable_feature: Procedure enabling one feature on the system
            features: Features to enable, in order
            retry_delay: Wait before the single retry of a transient failure
            settings: SUT settings passed through the context
            base_url: Where the installed system is reachable
            workdir: Working directory for command procedures
        """
        self._lg = LoggerFactory.derive(lg, "installer")
        self._install = install
        self._enable_feature = enable_feature
        self.features = list(features)
        self.retry_delay = retry_delay
        self._settings = dict(settings or {})
        self._base_url = base_url
        self._workdir = workdir
        self.invocations = 0

        if self.features and enable_feature is None:
            raise ValueError("features configured without a feature procedure")

    def build_context(self, dependencies: Sequence[ServiceDependency]) -> InstallContext:
        """Build the install context from started dependencies."""
        addresses: dict[str, ServiceAddress] = {}
        database_url = None
        browser_url = None
        for dep in dependencies:
            if not dep.started:
                continue
            address = dep.address
            addresses[dep.name] = address
            if dep.role is DependencyRole.DATABASE and database_url is None:
                database_url = address.url
            if (
                dep.role is DependencyRole.BROWSER
                and browser_url is None
                and dep.state is DependencyState.HEALTHY
            ):
                browser_url = address.url
        return InstallContext(
            addresses=addresses,
            database_url=database_url,
            browser_url=browser_url,
            settings=self._settings,
            workdir=self._workdir,
        )

    def install(
        self,
        dependencies: Sequence[ServiceDependency],
        cancel: CancelToken | None = None,
    ) -> InstallResult:
        """
        Install the system under test and enable its features.

        Raises:
            FatalInstallError: On a non-transient failure, a second
                transient failure, or a feature that cannot be enabled
            RunCancelledError: If cancelled during the retry wait
            PipelineStateError: If called more than once
        """
        if self.invocations:
            raise PipelineStateError("installer already invoked")
        self.invocations += 1

        cancel = cancel or CancelToken()
        context = self.build_context(dependencies)
        started = time.monotonic()
        handle, attempts = self._run_install(context, cancel)

        if isinstance(handle, InstalledSystem):
            system = handle
            if system.base_url is None:
                system.base_url = self._base_url
        else:
            system = InstalledSystem(
                context=context, handle=handle, base_url=self._base_url
            )

        for feature in self.features:
            cancel.raise_if_cancelled()
            self._enable(system, feature)

        duration = time.monotonic() - started
        self._lg.info(
            "system installed",
            extra={"attempts": attempts, "features": system.features, "after": duration},
        )
        return InstallResult(system=system, attempts=attempts, duration=duration)

    def _run_install(self, context: InstallContext, cancel: CancelToken) -> tuple[Any, int]:
        attempt = 0
        while True:
            attempt += 1
            cancel.raise_if_cancelled()
            try:
                return self._install(context), attempt
            except TransientInstallError as e:
                if attempt >= 2:
                    raise FatalInstallError(
                        f"install failed after retry: {e.message}", attempts=attempt
                    ) from e
                self._lg.warning(
                    "transient install failure, retrying",
                    extra={"error": e.message, "delay": self.retry_delay},
                )
                if cancel.wait(self.retry_delay):
                    raise RunCancelledError(
                        cancel.reason or "cancelled", phase="install"
                    ) from e
            except (FatalInstallError, RunCancelledError):
                raise
            except Exception as e:
                raise FatalInstallError(f"install procedure failed: {e}") from e

    def _enable(self, system: InstalledSystem, feature: str) -> None:
        assert self._enable_feature is not None
        try:
            self._enable_feature(system, feature)
        except FatalInstallError:
            raise
        except Exception as e:
            raise FatalInstallError(
                f"cannot enable feature '{feature}': {e}", feature=feature
            ) from e
        system.features.append(feature)
        self._lg.debug("feature enabled", extra={"feature": feature})


class CommandProcedure:
    """
    Install and feature procedures backed by external commands.

    The commands receive the context's environment merged over the current
    one via env=; the current process environment is left untouched.

    Example:
        proc = CommandProcedure(["./scripts/install.sh"],
                                feature_command=["./scripts/enable.sh", "{feature}"])
        installer = Installer(lg, proc.install, proc.enable_feature, ["search"])
    """

    def __init__(
        self,
        command: Sequence[str],
        feature_command: Sequence[str] | None = None,
        transient_exit_codes: Iterable[int] = DEFAULT_TRANSIENT_EXIT_CODES,
        transient_patterns: Iterable[str] = DEFAULT_TRANSIENT_PATTERNS,
        timeout: float | None = None,
        base_url: str | None = None,
    ) -> None:
        self._command = list(command)
        self._feature_command = list(feature_command) if feature_command else None
        self._transient_codes = frozenset(transient_exit_codes)
        self._transient = [re.compile(p, re.IGNORECASE) for p in transient_patterns]
        self._timeout = timeout
        self._base_url = base_url

    def _run(
        self, cmd: list[str], env: Mapping[str, str], cwd: Path | None
    ) -> subprocess.CompletedProcess[str]:
        full_env = dict(os.environ)
        full_env.update(env)
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                env=full_env,
                cwd=cwd,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise TransientInstallError(f"command timed out: {cmd[0]}") from e
        except OSError as e:
            raise FatalInstallError(f"cannot run {cmd[0]}: {e.strerror or e}") from e

    def _is_transient(self, result: subprocess.CompletedProcess[str]) -> bool:
        if result.returncode in self._transient_codes:
            return True
        output = (result.stdout or "") + (result.stderr or "")
        return any(p.search(output) for p in self._transient)

    def _tail(self, result: subprocess.CompletedProcess[str]) -> str:
        output = (result.stderr or result.stdout or "").strip()
        return "\n".join(output.splitlines()[-5:])

    def install(self, context: InstallContext) -> InstalledSystem:
        result = self._run(self._command, context.env(), context.workdir)
        if result.returncode != 0:
            message = f"install exited with {result.returncode}: {self._tail(result)}"
            if self._is_transient(result):
                raise TransientInstallError(message)
            raise FatalInstallError(message)
        return InstalledSystem(
            context=context,
            handle={"returncode": result.returncode, "stdout": result.stdout},
            base_url=self._base_url,
        )

    def enable_feature(self, system: InstalledSystem, feature: str) -> None:
        if self._feature_command is None:
            raise FatalInstallError("no feature command configured", feature=feature)
        cmd = [part.format(feature=feature) for part in self._feature_command]
        result = self._run(cmd, system.env(), system.context.workdir)
        if result.returncode != 0:
            raise FatalInstallError(
                f"feature command exited with {result.returncode}: {self._tail(result)}",
                feature=feature,
            )
