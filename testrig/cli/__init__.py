"""
Command line interface for testrig.

This module provides the `testrig` entry point and the output writers its
subcommands print through.
"""

from testrig.cli.output import BufferedOutput, ConsoleOutput, OutputWriter

__all__ = [
    "ConsoleOutput",
    "BufferedOutput",
    "OutputWriter",
]
