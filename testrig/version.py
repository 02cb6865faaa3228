"""
Version and build information.

The version comes from package metadata. Build information (commit, build
time) is read from `_build_info.py`, which setup.py generates at build time
and which is absent in a plain source checkout.
"""

import importlib
from importlib.metadata import PackageNotFoundError, version
from typing import Any

try:
    __version__ = version("testrig")
except PackageNotFoundError:
    # Package not installed (running from a source checkout)
    __version__ = "0.1.0-dev"


def build_info() -> dict[str, Any]:
    """Commit and build time of this build, or {} when not generated."""
    try:
        module = importlib.import_module("testrig._build_info")
    except ModuleNotFoundError:
        return {}
    return {
        "commit": getattr(module, "COMMIT_SHORT", None),
        "build_time": getattr(module, "BUILD_TIME", None),
        "modified": getattr(module, "MODIFIED", None),
    }
