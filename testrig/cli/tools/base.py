"""
Base class for CLI tools.

A tool is one `testrig` subcommand: it declares its arguments and runs
with the parsed namespace, returning the process exit code.
"""

from __future__ import annotations

import argparse
import sys
from abc import ABC, abstractmethod
from pathlib import Path

from ...config import PipelineSchema, load_schema
from ...delta import InvalidDurationError, delta_to_secs
from ...log import Logger, create_root_lg
from ..output import ConsoleOutput, OutputWriter


def duration_arg(value: str) -> float:
    """argparse type for durations ("30s", "5m")."""
    try:
        return delta_to_secs(value)
    except InvalidDurationError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


class Tool(ABC):
    """
    One CLI subcommand.

    Subclasses set name/help_text and implement add_args() and run().
    """

    name: str = ""
    help_text: str = ""
    description: str | None = None

    def __init__(
        self, out: OutputWriter | None = None, err: OutputWriter | None = None
    ) -> None:
        self.out: OutputWriter = out if out is not None else ConsoleOutput()
        self.err: OutputWriter = err if err is not None else ConsoleOutput(sys.stderr)

    def add_common_args(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-c",
            "--config",
            required=True,
            type=Path,
            help="pipeline configuration file (YAML)",
        )
        parser.add_argument(
            "--log-level",
            default=None,
            help="log level (trace, debug, info, warning, error, false)",
        )
        parser.add_argument(
            "--no-color", action="store_true", help="disable colored output"
        )

    @abstractmethod
    def add_args(self, parser: argparse.ArgumentParser) -> None:
        """Add tool-specific arguments."""

    @abstractmethod
    def run(self, args: argparse.Namespace) -> int:
        """Run the tool and return the exit code."""

    def load(self, args: argparse.Namespace) -> PipelineSchema:
        """Load and validate the pipeline file named by --config."""
        return load_schema(args.config)

    def base_dir(self, args: argparse.Namespace) -> Path:
        return Path(args.config).resolve().parent

    def create_lg(self, args: argparse.Namespace, schema: PipelineSchema) -> Logger:
        """Root logger from the logging section, overridden by the command line."""
        level = args.log_level if args.log_level is not None else schema.logging.level
        return create_root_lg(
            level=level,
            micros=schema.logging.micros,
            colors=schema.logging.colors and not args.no_color,
        )
