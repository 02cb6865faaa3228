"""Validates a pipeline file and prints its plan."""

from __future__ import annotations

import argparse

from ...config import ServiceSchema, TierSchema, build_pipeline
from ...delta import delta_str
from ...log import create_root_lg
from ..output import write_section
from .base import Tool


def _cmd(parts: list[str] | None) -> str:
    return " ".join(parts) if parts else "-"


def _service_row(svc: ServiceSchema) -> str:
    flags = " optional" if svc.optional else ""
    return (
        f"{svc.name} [{svc.role}]{flags} probe={svc.probe.type} "
        f"attempts={svc.probe.max_attempts} "
        f"interval={delta_str(svc.probe.interval)} cmd={_cmd(svc.command)}"
    )


def _tier_row(index: int, tier: TierSchema) -> str:
    browser = " requires-browser" if tier.requires_browser else ""
    return (
        f"{index}. {tier.name} [{tier.executor}]{browser} "
        f"selector={tier.selector or tier.target or '-'}"
    )


class ValidateTool(Tool):
    """Check configuration without provisioning anything."""

    name = "validate"
    help_text = "Validate the pipeline configuration"
    description = (
        "Load and validate the pipeline file, resolve every referenced "
        "Python object and print the services and tiers that would run."
    )

    def add_args(self, parser: argparse.ArgumentParser) -> None:
        self.add_common_args(parser)

    def run(self, args: argparse.Namespace) -> int:
        schema = self.load(args)
        # Builds every object so unresolvable targets fail here, not mid-run
        build_pipeline(schema, create_root_lg(level=False), base_dir=self.base_dir(args))

        self.out.write(f"configuration ok: {args.config}")
        write_section(self.out, "services", (_service_row(svc) for svc in schema.services))

        installer = schema.installer
        self.out.write()
        self.out.write(
            "installer: "
            + (_cmd(installer.command) if installer.command else str(installer.target))
        )
        if installer.features:
            self.out.write(f"  features: {', '.join(installer.features)}")

        deadline = schema.gate.deadline
        self.out.write()
        self.out.write(
            f"gate: policy={schema.gate.policy} "
            f"deadline={delta_str(deadline) if deadline is not None else 'none'}"
        )

        write_section(
            self.out,
            "tiers",
            (_tier_row(index, tier) for index, tier in enumerate(schema.tiers, 1)),
        )
        return 0
