"""testrig subcommands."""

from .base import Tool
from .probe_tool import ProbeTool
from .run_tool import RunTool
from .validate_tool import ValidateTool

__all__ = ["Tool", "RunTool", "ValidateTool", "ProbeTool"]
