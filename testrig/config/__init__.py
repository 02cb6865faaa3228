"""
Pipeline configuration.

Loading (YAML, ${var} substitution, TESTRIG_ environment overrides),
pydantic validation and construction of the runtime objects.

Example:
    from testrig.config import load_schema, build_pipeline

    schema = load_schema("pipeline.yaml")
    pipeline = build_pipeline(schema, lg)
"""

from pathlib import Path

from .builder import (
    build_installer,
    build_pipeline,
    build_probe,
    build_service,
    build_tier,
    report_path,
    select_tiers,
)
from .config import Config, convert_env_value
from .schemas import (
    GateSchema,
    InstallerSchema,
    LoggingSchema,
    PipelineSchema,
    ProbeSchema,
    ReportSchema,
    ServiceSchema,
    TierSchema,
    validate_config,
)


def load_schema(fname: str | Path) -> PipelineSchema:
    """
    Load and validate a pipeline file.

    Raises:
        ConfigError: If the file cannot be loaded or is invalid
    """
    return validate_config(dict(Config(fname)))


__all__ = [
    "Config",
    "convert_env_value",
    "load_schema",
    "validate_config",
    "PipelineSchema",
    "ServiceSchema",
    "ProbeSchema",
    "InstallerSchema",
    "TierSchema",
    "GateSchema",
    "ReportSchema",
    "LoggingSchema",
    "build_pipeline",
    "build_probe",
    "build_service",
    "build_installer",
    "build_tier",
    "select_tiers",
    "report_path",
]
