"""Runs each service's probe once against already running services."""

from __future__ import annotations

import argparse

from ...config import ServiceSchema, build_probe
from ...probe import ServiceAddress
from .base import Tool


def static_address(svc: ServiceSchema) -> ServiceAddress | None:
    """Address of a service as configured, or None when allocated at start."""
    if svc.port == 0:
        return None
    address = ServiceAddress(host=svc.host, port=svc.port)
    url = address.format(svc.url) if svc.url else None
    return ServiceAddress(host=svc.host, port=svc.port, url=url)


class ProbeTool(Tool):
    """One readiness check per service, no provisioning."""

    name = "probe"
    help_text = "Probe configured services once"
    description = (
        "Run each service's readiness probe once against services that are "
        "already running. Exits 0 when every required service is healthy."
    )

    def add_args(self, parser: argparse.ArgumentParser) -> None:
        self.add_common_args(parser)
        parser.add_argument(
            "-s",
            "--service",
            action="append",
            metavar="NAME",
            help="probe only this service (repeatable)",
        )

    def run(self, args: argparse.Namespace) -> int:
        schema = self.load(args)
        services = [
            s for s in schema.services if not args.service or s.name in args.service
        ]

        unhealthy = 0
        for svc in services:
            address = static_address(svc)
            if address is None:
                self.out.write(f"{svc.name}: skipped (port allocated at start)")
                continue

            probe = build_probe(svc.probe, svc.env)
            try:
                healthy = probe.check(address)
                target = probe.describe(address)
            except Exception as e:
                healthy, target = False, str(e)

            status = "healthy" if healthy else "unhealthy"
            self.out.write(f"{svc.name}: {status} ({target})")
            if not healthy and not svc.optional:
                unhealthy += 1

        return 1 if unhealthy else 0
