"""
testrig - automated test-environment orchestrator.

Provisions ephemeral service dependencies, waits until they are healthy,
installs the system under test, runs test tiers in declared order and
reports a single outcome, tearing everything down afterwards.
"""

from .cancel import CancelToken, SignalCanceller
from .delta import InvalidDurationError, delta_str, delta_to_secs
from .exceptions import (
    ConfigError,
    FatalInstallError,
    InstallError,
    PipelineStateError,
    ProvisionError,
    ReadinessTimeoutError,
    RunCancelledError,
    TeardownWarning,
    TestrigError,
    TransientInstallError,
)
from .gate import GateResult, PollOutcome, ReadinessGate
from .hooks import HookContext, HookEvent, PipelineHooks
from .installer import (
    CommandProcedure,
    InstallContext,
    InstalledSystem,
    Installer,
    InstallResult,
)
from .pipeline import GatePolicy, Pipeline, PipelinePhase
from .probe import (
    CallableProbe,
    CommandProbe,
    HealthProbe,
    HTTPProbe,
    ServiceAddress,
    SQLProbe,
    TCPProbe,
)
from .report import EXIT_CODES, Report, RunStatus
from .service import DependencyRole, DependencyState, ServiceDependency
from .tier import (
    CaseContext,
    CaseFailure,
    PytestTierExecutor,
    PythonTierExecutor,
    SkipCase,
    TestCase,
    TestTier,
    TierExecutor,
    TierResult,
    TierRunner,
)
from .version import __version__

# Explicit public API
__all__ = [
    # Version
    "__version__",
    # Pipeline
    "Pipeline",
    "PipelinePhase",
    "GatePolicy",
    "PipelineHooks",
    "HookEvent",
    "HookContext",
    "CancelToken",
    "SignalCanceller",
    # Dependencies
    "ServiceDependency",
    "DependencyRole",
    "DependencyState",
    "ServiceAddress",
    "HealthProbe",
    "TCPProbe",
    "HTTPProbe",
    "CommandProbe",
    "SQLProbe",
    "CallableProbe",
    "ReadinessGate",
    "GateResult",
    "PollOutcome",
    # Installation
    "Installer",
    "InstallContext",
    "InstalledSystem",
    "InstallResult",
    "CommandProcedure",
    # Tiers
    "TestTier",
    "TestCase",
    "CaseContext",
    "SkipCase",
    "TierExecutor",
    "PythonTierExecutor",
    "PytestTierExecutor",
    "TierRunner",
    "TierResult",
    "CaseFailure",
    # Report
    "Report",
    "RunStatus",
    "EXIT_CODES",
    # Durations
    "delta_str",
    "delta_to_secs",
    "InvalidDurationError",
    # Exceptions
    "TestrigError",
    "ConfigError",
    "ProvisionError",
    "ReadinessTimeoutError",
    "InstallError",
    "TransientInstallError",
    "FatalInstallError",
    "PipelineStateError",
    "RunCancelledError",
    "TeardownWarning",
]
