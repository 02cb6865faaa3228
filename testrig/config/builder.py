"""
Builds runtime pipeline objects from a validated configuration.
"""

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from ..exceptions import ConfigError
from ..hooks import PipelineHooks
from ..installer import CommandProcedure, Installer
from ..log import Logger
from ..pipeline import GatePolicy, Pipeline
from ..probe import (
    CallableProbe,
    CommandProbe,
    HealthProbe,
    HTTPProbe,
    SQLProbe,
    TCPProbe,
)
from ..service import DependencyRole, ServiceDependency
from ..tier import (
    PytestTierExecutor,
    PythonTierExecutor,
    TestTier,
    TierExecutor,
    TierRunner,
    load_object,
)
from .schemas import (
    InstallerSchema,
    PipelineSchema,
    ProbeSchema,
    ServiceSchema,
    TierSchema,
)


def _resolve_path(base_dir: Path, value: str | None) -> Path | None:
    if value is None:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def _load(target: str, what: str) -> Any:
    try:
        return load_object(target)
    except (ImportError, AttributeError, ValueError) as e:
        raise ConfigError(f"cannot load {what}: {e}", target=target) from e


def build_probe(schema: ProbeSchema, env: dict[str, str] | None = None) -> HealthProbe:
    """Create the probe described by schema."""
    common: dict[str, Any] = {
        "interval": schema.interval,
        "max_attempts": schema.max_attempts,
        "timeout": schema.timeout,
    }
    if schema.type == "tcp":
        return TCPProbe(host=schema.host, port=schema.port, **common)
    if schema.type == "http":
        return HTTPProbe(
            url=schema.url,
            expected_status=schema.expected_status,
            method=schema.method,
            **common,
        )
    if schema.type == "command":
        assert schema.command is not None
        return CommandProbe(schema.command, env=env or None, **common)
    if schema.type == "sql":
        return SQLProbe(url=schema.url, **common)

    assert schema.target is not None
    func = _load(schema.target, "probe")
    if not callable(func):
        raise ConfigError("probe target is not callable", target=schema.target)
    return CallableProbe(func, **common)


def build_service(schema: ServiceSchema, base_dir: Path) -> ServiceDependency:
    """Create one service dependency."""
    return ServiceDependency(
        name=schema.name,
        probe=build_probe(schema.probe, schema.env),
        command=schema.command,
        stop_command=schema.stop_command,
        role=DependencyRole(schema.role),
        host=schema.host,
        port=schema.port,
        url=schema.url,
        detach=schema.detach,
        optional=schema.optional,
        timeout=schema.timeout,
        stop_timeout=schema.stop_timeout,
        env=schema.env,
        log_file=_resolve_path(base_dir, schema.log_file),
        check_port=schema.check_port,
    )


def build_installer(schema: InstallerSchema, lg: Logger, base_dir: Path) -> Installer:
    """Create the installer from a command or a Python procedure."""
    workdir = _resolve_path(base_dir, schema.workdir) or base_dir

    if schema.command is not None:
        kwargs: dict[str, Any] = {
            "transient_exit_codes": schema.transient_exit_codes,
            "timeout": schema.timeout,
        }
        if schema.transient_patterns is not None:
            kwargs["transient_patterns"] = schema.transient_patterns
        procedure = CommandProcedure(
            schema.command, feature_command=schema.feature_command, **kwargs
        )
        install = procedure.install
        enable_feature = procedure.enable_feature if schema.feature_command else None
    else:
        assert schema.target is not None
        install = _load(schema.target, "install procedure")
        enable_feature = None

    if schema.feature_target is not None:
        enable_feature = _load(schema.feature_target, "feature procedure")

    return Installer(
        lg,
        install=install,
        enable_feature=enable_feature,
        features=schema.features,
        retry_delay=schema.retry_delay,
        settings=schema.settings,
        base_url=schema.base_url,
        workdir=workdir,
    )


def build_tier(schema: TierSchema, base_dir: Path) -> TestTier:
    """Create one tier with its executor."""
    executor: TierExecutor
    if schema.executor == "python":
        assert schema.target is not None
        executor = PythonTierExecutor(_load(schema.target, "case collector"))
    else:
        executor = PytestTierExecutor(
            args=schema.args,
            python=schema.python,
            workdir=_resolve_path(base_dir, schema.workdir) or base_dir,
        )
    return TestTier(
        name=schema.name,
        selector=schema.selector,
        executor=executor,
        requires_browser=schema.requires_browser,
        case_timeout=schema.case_timeout,
        timeout=schema.timeout,
        parallelism=schema.parallelism,
        env=schema.env,
    )


def select_tiers(tiers: Sequence[TierSchema], names: Iterable[str] | None) -> list[TierSchema]:
    """
    Restrict tiers to the given names, keeping declaration order.

    Raises:
        ConfigError: If a name matches no tier
    """
    if not names:
        return list(tiers)
    wanted = set(names)
    unknown = wanted - {t.name for t in tiers}
    if unknown:
        raise ConfigError(f"unknown tiers: {', '.join(sorted(unknown))}")
    return [t for t in tiers if t.name in wanted]


def build_pipeline(
    schema: PipelineSchema,
    lg: Logger,
    base_dir: Path | None = None,
    tiers: Iterable[str] | None = None,
    deadline: float | None = None,
    hooks: PipelineHooks | None = None,
) -> Pipeline:
    """
    Turn a validated configuration into a runnable Pipeline.

    Args:
        schema: Validated pipeline configuration
        lg: Root logger
        base_dir: Directory relative paths are resolved against (default: cwd)
        tiers: Names of the tiers to run (default: all, in declared order)
        deadline: Readiness deadline overriding gate.deadline
        hooks: Callbacks for pipeline events

    Raises:
        ConfigError: If a referenced object cannot be loaded or a tier name
            is unknown
    """
    base_dir = base_dir or Path.cwd()
    report = schema.report

    capture = None
    if report.capture is not None:
        capture = _load(report.capture, "artifact capture")
        if not hasattr(capture, "extension"):
            raise ConfigError("artifact capture lacks an 'extension'", target=report.capture)

    runner = TierRunner(
        lg,
        artifacts_dir=_resolve_path(base_dir, report.artifacts_dir),
        capture=capture,
    )

    try:
        return Pipeline(
            lg,
            dependencies=[build_service(s, base_dir) for s in schema.services],
            installer=build_installer(schema.installer, lg, base_dir),
            tiers=[build_tier(t, base_dir) for t in select_tiers(schema.tiers, tiers)],
            runner=runner,
            deadline=deadline if deadline is not None else schema.gate.deadline,
            policy=GatePolicy(schema.gate.policy),
            hooks=hooks,
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e


def report_path(schema: PipelineSchema, base_dir: Path) -> Path | None:
    """Where the JSON report is written, if anywhere."""
    return _resolve_path(base_dir, schema.report.path)
