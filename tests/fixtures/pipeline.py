"""
Pipeline fixtures for testing.

Provides pre-wired dependencies, installers, tiers and runners built from
the fakes in tests.helpers.fakes.
"""

import pytest

from testrig.cancel import CancelToken
from testrig.installer import Installer
from testrig.log import Logger
from testrig.service import DependencyRole
from testrig.tier import TierRunner
from tests.helpers.fakes import CountingDependency, ScriptedInstall, make_dependency


@pytest.fixture
def cancel() -> CancelToken:
    """Token that is never cancelled unless a test does so."""
    return CancelToken()


@pytest.fixture
def db() -> CountingDependency:
    """Database dependency healthy on the second poll."""
    return make_dependency("db", healthy_after=2, role=DependencyRole.DATABASE)


@pytest.fixture
def browser() -> CountingDependency:
    """Browser grid dependency healthy on the first poll."""
    return make_dependency(
        "browser",
        healthy_after=1,
        role=DependencyRole.BROWSER,
        url="http://{host}:4444/wd/hub",
    )


@pytest.fixture
def install() -> ScriptedInstall:
    """Install procedure that succeeds."""
    return ScriptedInstall()


@pytest.fixture
def installer(lg: Logger, install: ScriptedInstall) -> Installer:
    """Installer around the scripted install procedure, without retry delay."""
    return Installer(lg, install=install, retry_delay=0.0, base_url="http://sut.local")


@pytest.fixture
def runner(lg: Logger) -> TierRunner:
    """Tier runner without an artifacts directory."""
    return TierRunner(lg)
