"""
Test tiers and the tier runner.

A tier is an independently scoped collection of test cases. The runner
executes one tier against the installed system and always produces a
TierResult: a failing or crashing case is caught at the case boundary and
recorded as a CaseFailure, and a tier that needs the browser grid while it
is unavailable is recorded as skipped rather than failed.

Executors decide where cases come from:

- PythonTierExecutor collects TestCase objects from a `module:function`
  and runs them in-process, sequentially or with bounded parallelism.
- PytestTierExecutor runs pytest in a subprocess and reads its JUnit XML.
"""

from __future__ import annotations

import importlib
import os
import re
import shlex
import subprocess
import sys
import tempfile
import threading
import time
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .cancel import CancelToken
from .exceptions import RunCancelledError
from .installer import InstalledSystem
from .log import Logger, LoggerFactory

_ATTACHMENT = re.compile(r"\[\[ATTACHMENT\|([^\]]+)\]\]")


def slugify(text: str, limit: int = 80) -> str:
    """File-name safe version of a case or tier identifier."""
    slug = re.sub(r"[^A-Za-z0-9._-]+", "_", text).strip("_")
    return slug[:limit] or "case"


def load_object(target: str) -> Any:
    """
    Import an object from a `package.module:attribute` reference.

    Raises:
        ValueError: If the reference is malformed
        ImportError, AttributeError: If the object cannot be found
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"expected 'module:attribute', got {target!r}")
    obj: Any = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


@dataclass
class CaseFailure:
    """One failed test case."""

    case_id: str
    message: str
    artifact: str | None = None
    kind: str = "failure"  # failure, error or timeout

    def to_dict(self) -> dict[str, Any]:
        return {
            "case_id": self.case_id,
            "message": self.message,
            "artifact": self.artifact,
            "kind": self.kind,
        }


@dataclass
class TierResult:
    """Aggregated outcome of one tier."""

    tier_name: str
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0
    failures: list[CaseFailure] = field(default_factory=list)
    skip_reason: str | None = None

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @classmethod
    def skipped_tier(cls, tier_name: str, reason: str) -> TierResult:
        """Result for a tier that did not run at all."""
        return cls(tier_name=tier_name, skip_reason=reason)

    def add_failure(self, failure: CaseFailure) -> None:
        self.failed += 1
        self.failures.append(failure)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.tier_name,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration": round(self.duration, 3),
            "skip_reason": self.skip_reason,
            "failures": [f.to_dict() for f in self.failures],
        }


class SkipCase(Exception):
    """Raised from a case body to mark the case skipped."""

    pass


@dataclass
class CaseContext:
    """What a case body receives."""

    tier: str
    case_id: str
    system: InstalledSystem | None
    artifact_path: Path | None = None


@dataclass
class TestCase:
    """An in-process test case."""

    __test__ = False

    case_id: str
    func: Callable[[CaseContext], Any]
    skip: str | None = None


class ArtifactCapture(Protocol):
    """
    Captures an artifact (e.g. a browser screenshot) for a failed case.

    Called with a case-unique path; returns the path actually written, or
    None if nothing was captured.
    """

    extension: str

    def __call__(
        self, case_id: str, path: Path, system: InstalledSystem | None
    ) -> Path | None: ...


@dataclass
class TestTier:
    """
    One independently scoped collection of test cases.

    requires_browser marks tiers that need a healthy browser-grid
    dependency; without one the tier is recorded as skipped.
    """

    __test__ = False

    name: str
    selector: str
    executor: TierExecutor
    requires_browser: bool = False
    case_timeout: float | None = None
    timeout: float | None = None
    parallelism: int = 1
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {self.parallelism}")


class TierExecutor(ABC):
    """Executes a tier's test cases against the installed system."""

    kind = "executor"

    @abstractmethod
    def execute(
        self,
        tier: TestTier,
        system: InstalledSystem | None,
        runner: TierRunner,
        cancel: CancelToken,
    ) -> TierResult:
        """Run the tier and return its result."""


class PythonTierExecutor(TierExecutor):
    """
    Collects TestCase objects from a Python callable.

    The target receives the tier selector and the installed system and
    returns an iterable of TestCase.
    """

    kind = "python"

    def __init__(
        self,
        target: str | Callable[[str, InstalledSystem | None], Iterable[TestCase]],
    ) -> None:
        self._target = target

    def _collector(self) -> Callable[[str, InstalledSystem | None], Iterable[TestCase]]:
        if callable(self._target):
            return self._target
        return load_object(self._target)

    def execute(self, tier, system, runner, cancel) -> TierResult:
        cases = list(self._collector()(tier.selector, system))
        return runner.run_cases(tier, cases, system, cancel)


class PytestTierExecutor(TierExecutor):
    """
    Runs pytest in a subprocess and parses its JUnit XML report.

    The selector is a pytest argument string ("tests/unit -k smoke") or a
    marker expression prefixed with "tag:" ("tag:functional and not slow").
    """

    kind = "pytest"

    def __init__(
        self,
        args: Sequence[str] = (),
        python: str | None = None,
        workdir: Path | None = None,
    ) -> None:
        self._args = list(args)
        self._python = python or sys.executable
        self._workdir = workdir

    def command(self, tier: TestTier, junit_path: Path) -> list[str]:
        if tier.selector.startswith("tag:"):
            selection = ["-m", tier.selector[len("tag:") :].strip()]
        else:
            selection = shlex.split(tier.selector)
        return [
            self._python,
            "-m",
            "pytest",
            *selection,
            f"--junitxml={junit_path}",
            "-q",
            *self._args,
        ]

    def execute(self, tier, system, runner, cancel) -> TierResult:
        cancel.raise_if_cancelled()
        if runner.artifacts_dir is not None:
            runner.artifacts_dir.mkdir(parents=True, exist_ok=True)
            return self._execute(tier, system, runner.artifacts_dir)
        with tempfile.TemporaryDirectory(prefix="testrig-") as tmp:
            return self._execute(tier, system, Path(tmp))

    def _execute(
        self, tier: TestTier, system: InstalledSystem | None, out_dir: Path
    ) -> TierResult:
        junit_path = (out_dir / f"junit-{slugify(tier.name)}.xml").resolve()
        junit_path.unlink(missing_ok=True)

        env = dict(os.environ)
        if system is not None:
            env.update(system.env())
        env.update(tier.env)

        cmd = self.command(tier, junit_path)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                env=env,
                cwd=self._workdir,
                timeout=tier.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            result = self._parse_or_empty(tier, junit_path)
            result.add_failure(
                CaseFailure(f"{tier.name}::pytest", "tier timed out", kind="timeout")
            )
            return result

        result = self._parse_or_empty(tier, junit_path)
        # 0: all passed, 1: some failed, 5: nothing collected
        if proc.returncode not in (0, 1, 5) or (
            proc.returncode == 1 and result.failed == 0
        ):
            tail = "\n".join((proc.stdout + proc.stderr).strip().splitlines()[-5:])
            result.add_failure(
                CaseFailure(
                    f"{tier.name}::pytest",
                    f"pytest exited with {proc.returncode}: {tail}",
                    kind="error",
                )
            )
        return result

    def _parse_or_empty(self, tier: TestTier, junit_path: Path) -> TierResult:
        if junit_path.exists():
            try:
                return parse_junit(junit_path, tier.name)
            except ET.ParseError:
                pass
        return TierResult(tier_name=tier.name)


def _case_message(element: ET.Element) -> str:
    message = element.get("message")
    if message:
        return message
    text = (element.text or "").strip()
    return text.splitlines()[0] if text else element.tag


def parse_junit(path: Path, tier_name: str) -> TierResult:
    """
    Parse a JUnit XML file into a TierResult.

    Artifacts are read from `[[ATTACHMENT|path]]` markers in a case's
    system-out.

    Raises:
        xml.etree.ElementTree.ParseError: If the file is not valid XML
    """
    result = TierResult(tier_name=tier_name)
    root = ET.parse(path).getroot()

    for case in root.iter("testcase"):
        classname = case.get("classname", "")
        name = case.get("name", "")
        case_id = f"{classname}::{name}" if classname else name

        failure = case.find("failure")
        error = case.find("error")
        if failure is not None or error is not None:
            element = failure if failure is not None else error
            assert element is not None
            out = case.findtext("system-out") or ""
            match = _ATTACHMENT.search(out)
            result.add_failure(
                CaseFailure(
                    case_id,
                    _case_message(element),
                    artifact=match.group(1) if match else None,
                    kind="failure" if failure is not None else "error",
                )
            )
        elif case.find("skipped") is not None:
            result.skipped += 1
        else:
            result.passed += 1

    return result


@dataclass
class _CaseOutcome:
    index: int
    status: str  # passed, failed or skipped
    failure: CaseFailure | None = None


class TierRunner:
    """
    Runs test tiers.

    Example:
        runner = TierRunner(lg, artifacts_dir=Path("build/artifacts"))
        result = runner.run(tier, system, browser_available=True)
    """

    def __init__(
        self,
        lg: Logger,
        artifacts_dir: Path | None = None,
        capture: ArtifactCapture | None = None,
    ) -> None:
        self._lg = LoggerFactory.derive(lg, "tier")
        self.artifacts_dir = artifacts_dir
        self._capture = capture

    def run(
        self,
        tier: TestTier,
        system: InstalledSystem | None,
        browser_available: bool = True,
        cancel: CancelToken | None = None,
    ) -> TierResult:
        """
        Run one tier.

        Never raises for test-level problems: executor crashes become a
        single CaseFailure on the tier.
        """
        cancel = cancel or CancelToken()
        lg = LoggerFactory.derive(self._lg, tier.name)

        if tier.requires_browser and not browser_available:
            lg.warning("tier skipped", extra={"reason": "browser unavailable"})
            return TierResult.skipped_tier(tier.name, "browser dependency unavailable")

        lg.info("tier started", extra={"selector": tier.selector})
        started = time.monotonic()
        try:
            result = tier.executor.execute(tier, system, self, cancel)
        except RunCancelledError:
            raise
        except Exception as e:
            lg.error("tier executor failed", extra={"exception": e})
            result = TierResult(tier_name=tier.name)
            result.add_failure(
                CaseFailure(f"{tier.name}::{tier.executor.kind}", str(e), kind="error")
            )

        result.duration = time.monotonic() - started
        log = lg.info if result.ok else lg.warning
        log(
            "tier finished",
            extra={
                "passed": result.passed,
                "failed": result.failed,
                "skipped": result.skipped,
                "after": result.duration,
            },
        )
        return result

    def artifact_path(self, tier: TestTier, index: int, case_id: str, ext: str) -> Path | None:
        """Case-unique artifact path (None without an artifacts dir)."""
        if self.artifacts_dir is None:
            return None
        name = f"{slugify(tier.name)}-{index:04d}-{slugify(case_id)}.{ext}"
        return self.artifacts_dir / name

    def run_cases(
        self,
        tier: TestTier,
        cases: Sequence[TestCase],
        system: InstalledSystem | None,
        cancel: CancelToken | None = None,
    ) -> TierResult:
        """
        Run in-process cases, sequentially or with bounded parallelism.

        Failures are reported in case order regardless of completion order.
        """
        cancel = cancel or CancelToken()
        if self.artifacts_dir is not None:
            self.artifacts_dir.mkdir(parents=True, exist_ok=True)

        def run_one(index: int) -> _CaseOutcome:
            if cancel.is_cancelled():
                return _CaseOutcome(index, "skipped")
            return self._run_case(tier, index, cases[index], system)

        if tier.parallelism > 1 and len(cases) > 1:
            with ThreadPoolExecutor(
                max_workers=tier.parallelism, thread_name_prefix=f"tier-{tier.name}"
            ) as pool:
                outcomes = list(pool.map(run_one, range(len(cases))))
        else:
            outcomes = [run_one(i) for i in range(len(cases))]

        result = TierResult(tier_name=tier.name)
        for outcome in sorted(outcomes, key=lambda o: o.index):
            if outcome.status == "passed":
                result.passed += 1
            elif outcome.status == "skipped":
                result.skipped += 1
            else:
                assert outcome.failure is not None
                result.add_failure(outcome.failure)
        return result

    def _run_case(
        self,
        tier: TestTier,
        index: int,
        case: TestCase,
        system: InstalledSystem | None,
    ) -> _CaseOutcome:
        if case.skip is not None:
            return _CaseOutcome(index, "skipped")

        ext = self._capture.extension if self._capture is not None else "png"
        ctx = CaseContext(
            tier=tier.name,
            case_id=case.case_id,
            system=system,
            artifact_path=self.artifact_path(tier, index, case.case_id, ext),
        )

        box: dict[str, BaseException] = {}

        def body() -> None:
            try:
                case.func(ctx)
            except BaseException as e:
                box["error"] = e

        worker = threading.Thread(
            target=body, name=f"case-{tier.name}-{index}", daemon=True
        )
        worker.start()
        worker.join(tier.case_timeout)

        if worker.is_alive():
            failure = CaseFailure(
                case.case_id, f"timed out after {tier.case_timeout}s", kind="timeout"
            )
        elif "error" not in box:
            return _CaseOutcome(index, "passed")
        elif isinstance(box["error"], SkipCase):
            return _CaseOutcome(index, "skipped")
        else:
            error = box["error"]
            kind = "failure" if isinstance(error, AssertionError) else "error"
            message = str(error) or error.__class__.__name__
            failure = CaseFailure(case.case_id, message, kind=kind)

        failure.artifact = self._artifact(ctx)
        self._lg.debug(
            "case failed",
            extra={"tier": tier.name, "case": case.case_id, "kind": failure.kind},
        )
        return _CaseOutcome(index, "failed", failure)

    def _artifact(self, ctx: CaseContext) -> str | None:
        """Capture an artifact for a failed case without letting errors escape."""
        path = ctx.artifact_path
        if path is None:
            return None
        if self._capture is not None:
            try:
                captured = self._capture(ctx.case_id, path, ctx.system)
            except Exception as e:
                self._lg.warning(
                    "artifact capture failed",
                    extra={"case": ctx.case_id, "error": str(e)},
                )
                captured = None
            if captured is not None:
                return str(captured)
        if path.exists():
            return str(path)
        return None
