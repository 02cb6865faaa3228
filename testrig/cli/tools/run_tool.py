"""Runs a pipeline end to end."""

from __future__ import annotations

import argparse
from pathlib import Path

from ...cancel import CancelToken, SignalCanceller
from ...config import build_pipeline, report_path
from ...report import EXIT_CANCELLED
from ..output import write_error, write_summary
from .base import Tool, duration_arg


class RunTool(Tool):
    """Provision, install, test and tear down."""

    name = "run"
    help_text = "Run the pipeline"
    description = (
        "Provision the service dependencies, wait until they are healthy, "
        "install the system under test, run the tiers in declared order and "
        "write the report. Exit code: 0 succeeded, 1 failed, 2 aborted, "
        "3 usage or configuration error, 130/143 interrupted."
    )

    def add_args(self, parser: argparse.ArgumentParser) -> None:
        self.add_common_args(parser)
        parser.add_argument(
            "-t",
            "--tier",
            action="append",
            metavar="NAME",
            help="run only this tier (repeatable; declared order is kept)",
        )
        parser.add_argument(
            "--report", type=Path, default=None, help="JSON report path"
        )
        parser.add_argument(
            "--deadline",
            type=duration_arg,
            default=None,
            help="cancel the whole run after this long (e.g. 30m)",
        )

    def run(self, args: argparse.Namespace) -> int:
        schema = self.load(args)
        base_dir = self.base_dir(args)
        lg = self.create_lg(args, schema)
        pipeline = build_pipeline(schema, lg, base_dir=base_dir, tiers=args.tier)

        token = CancelToken(deadline=args.deadline)
        with SignalCanceller(token) as canceller:
            report = pipeline.run(token)

        write_summary(self.out, report)

        path = args.report if args.report is not None else report_path(schema, base_dir)
        if path is not None:
            try:
                report.write(path)
            except OSError as e:
                # The exit code still reports the run outcome
                lg.error("report not written", extra={"path": str(path), "error": str(e)})
                write_error(self.err, f"cannot write report {path}: {e}")
            else:
                lg.info("report written", extra={"path": str(path)})

        code = report.exit_code
        if code == EXIT_CANCELLED and canceller.signalled:
            code = canceller.return_code
        return code
