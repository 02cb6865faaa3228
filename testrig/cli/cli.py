#!/usr/bin/env python3
"""
testrig CLI - run automated test environments.

Usage:
    testrig run -c pipeline.yaml
    testrig run -c pipeline.yaml --tier unit --tier functional --report build/report.json
    testrig validate -c pipeline.yaml
    testrig probe -c pipeline.yaml
    testrig --help
"""

import argparse
import sys
from collections.abc import Sequence

import testrig
from testrig.cli.output import ConsoleOutput, OutputWriter, write_error
from testrig.cli.tools import ProbeTool, RunTool, Tool, ValidateTool
from testrig.exceptions import TestrigError
from testrig.log import InvalidLogLevelError
from testrig.report import EXIT_USAGE

# All CLI tools
_TOOLS: list[type[Tool]] = [RunTool, ValidateTool, ProbeTool]


def build_parser(tools: Sequence[Tool]) -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per tool."""
    parser = argparse.ArgumentParser(
        prog="testrig",
        description="Automated test-environment orchestrator",
    )
    parser.add_argument(
        "-v", "--version", action="version", version=f"testrig {testrig.__version__}"
    )
    subparsers = parser.add_subparsers(dest="tool", metavar="COMMAND", required=True)
    for tool in tools:
        sub = subparsers.add_parser(
            tool.name, help=tool.help_text, description=tool.description
        )
        tool.add_args(sub)
        sub.set_defaults(_tool=tool)
    return parser


def main(
    argv: Sequence[str] | None = None,
    out: OutputWriter | None = None,
    err: OutputWriter | None = None,
) -> int:
    """Main entry point for the testrig CLI."""
    err = err if err is not None else ConsoleOutput(sys.stderr)
    tools = [tool_cls(out, err) for tool_cls in _TOOLS]
    parser = build_parser(tools)

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on usage errors, which means ABORTED here
        code = e.code if isinstance(e.code, int) else EXIT_USAGE
        return EXIT_USAGE if code == 2 else code

    try:
        return args._tool.run(args)
    except (TestrigError, InvalidLogLevelError) as e:
        write_error(err, e)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
