"""Build hook writing testrig/_build_info.py into the build directory.

pyproject.toml holds the project metadata; this file only registers a
build_py command that records the git commit a wheel was built from. The
report embeds it so a CI run can be traced back to the orchestrator build.
"""

import subprocess
import sys
from datetime import UTC, datetime
from pathlib import Path

from setuptools import setup
from setuptools.command.build_py import build_py

_TEMPLATE = '''\
"""Build information - generated by setup.py, do not edit."""

COMMIT_HASH = "{commit}"
COMMIT_SHORT = "{short}"
BUILD_TIME = "{built}"
MODIFIED = {modified}
'''


def _git(*args: str) -> str | None:
    """Output of a git command run in the source tree, or None on failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=5,
            cwd=Path(__file__).parent,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    return result.stdout.strip() if result.returncode == 0 else None


def write_build_info(package_dir: Path) -> bool:
    commit = _git("rev-parse", "HEAD")
    if not commit:
        print("testrig: not a git checkout, no _build_info.py", file=sys.stderr)
        return False

    status = _git("status", "--porcelain")
    content = _TEMPLATE.format(
        commit=commit,
        short=commit[:7],
        built=datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
        modified=bool(status),
    )
    (package_dir / "_build_info.py").write_text(content)
    print(f"testrig: generated _build_info.py ({commit[:7]})", file=sys.stderr)
    return True


class BuildPyWithBuildInfo(build_py):
    """build_py that also writes _build_info.py, leaving the sources untouched."""

    def run(self):
        super().run()
        if self.build_lib:
            package_dir = Path(self.build_lib) / "testrig"
            if package_dir.is_dir():
                write_build_info(package_dir)


setup(cmdclass={"build_py": BuildPyWithBuildInfo})
