"""
Configuration schemas using Pydantic for validation.

Durations accept a number of seconds or a duration string ("30s", "1m30s").
Commands accept a list of arguments or a shell-style string.
"""

import re
import shlex
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ..delta import delta_to_secs
from ..exceptions import ConfigError
from ..log import InvalidLogLevelError, LogConfig


def _duration(value: Any) -> Any:
    if value is None:
        return None
    return delta_to_secs(value)


def _command(value: Any) -> Any:
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list):
        return [str(v) for v in value]
    return value


Duration = Annotated[float, BeforeValidator(_duration), Field(ge=0)]
Command = Annotated[list[str], BeforeValidator(_command)]

_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_TARGET = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_][\w.]*$")


def _check_target(value: str | None) -> str | None:
    if value is not None and not _TARGET.match(value):
        raise ValueError(f"expected 'module:attribute', got {value!r}")
    return value


class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ProbeSchema(_Schema):
    """Readiness probe of a service."""

    type: Literal["tcp", "http", "command", "sql", "callable"] = Field(
        default="tcp", description="Probe kind"
    )
    interval: Duration = Field(default=1.0, description="Fixed wait between attempts")
    max_attempts: int = Field(default=30, ge=1, description="Attempts per evaluation")
    timeout: Duration = Field(default=2.0, description="Timeout of a single check")
    host: str | None = Field(default=None, description="tcp: host override")
    port: int | None = Field(default=None, ge=1, le=65535, description="tcp: port override")
    url: str | None = Field(default=None, description="http/sql: URL template")
    expected_status: list[int] = Field(default_factory=lambda: [200])
    method: str = Field(default="GET", description="http: request method")
    command: Command | None = Field(default=None, description="command: probe command")
    target: str | None = Field(default=None, description="callable: module:function")

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str | None) -> str | None:
        return _check_target(v)

    @model_validator(mode="after")
    def validate_kind_fields(self) -> "ProbeSchema":
        if self.type == "command" and not self.command:
            raise ValueError("command probe requires 'command'")
        if self.type == "callable" and not self.target:
            raise ValueError("callable probe requires 'target'")
        return self


class ServiceSchema(_Schema):
    """One ephemeral service dependency."""

    name: str
    role: Literal["database", "browser", "service"] = "service"
    command: Command | None = None
    stop_command: Command | None = None
    detach: bool = False
    host: str = "127.0.0.1"
    port: int | None = Field(default=None, ge=0, le=65535, description="0 allocates a free port")
    url: str | None = Field(default=None, description="Connection URL template")
    optional: bool = False
    timeout: Duration = 120.0
    stop_timeout: Duration = 10.0
    env: dict[str, str] = Field(default_factory=dict)
    log_file: str | None = None
    check_port: bool = True
    probe: ProbeSchema = Field(default_factory=ProbeSchema)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _NAME.match(v):
            raise ValueError(f"invalid name {v!r}")
        return v

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v


class InstallerSchema(_Schema):
    """Installation of the system under test."""

    command: Command | None = Field(default=None, description="Install command")
    target: str | None = Field(default=None, description="Install procedure module:function")
    features: list[str] = Field(default_factory=list)
    feature_command: Command | None = Field(
        default=None, description="Feature command; {feature} is substituted"
    )
    feature_target: str | None = Field(
        default=None, description="Feature procedure module:function"
    )
    retry_delay: Duration = 5.0
    timeout: Duration | None = None
    transient_exit_codes: list[int] = Field(default_factory=lambda: [75])
    transient_patterns: list[str] | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    base_url: str | None = None
    workdir: str | None = None

    @field_validator("target", "feature_target")
    @classmethod
    def validate_target(cls, v: str | None) -> str | None:
        return _check_target(v)

    @model_validator(mode="after")
    def validate_procedures(self) -> "InstallerSchema":
        if (self.command is None) == (self.target is None):
            raise ValueError("exactly one of 'command' or 'target' is required")
        if self.feature_command is not None and self.feature_target is not None:
            raise ValueError("'feature_command' and 'feature_target' are exclusive")
        if self.features and self.feature_command is None and self.feature_target is None:
            raise ValueError("'features' requires 'feature_command' or 'feature_target'")
        return self


class TierSchema(_Schema):
    """One test tier."""

    name: str
    selector: str = ""
    executor: Literal["pytest", "python"] = "pytest"
    target: str | None = Field(default=None, description="python: case collector module:function")
    requires_browser: bool = False
    case_timeout: Duration | None = None
    timeout: Duration | None = None
    parallelism: int = Field(default=1, ge=1)
    env: dict[str, str] = Field(default_factory=dict)
    args: list[str] = Field(default_factory=list, description="pytest: extra arguments")
    python: str | None = Field(default=None, description="pytest: interpreter")
    workdir: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _NAME.match(v):
            raise ValueError(f"invalid name {v!r}")
        return v

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str | None) -> str | None:
        return _check_target(v)

    @model_validator(mode="after")
    def validate_executor(self) -> "TierSchema":
        if self.executor == "python" and not self.target:
            raise ValueError("python executor requires 'target'")
        return self


class GateSchema(_Schema):
    """Readiness gate settings."""

    deadline: Duration | None = None
    policy: Literal["strict", "scheduled"] = "strict"


class ReportSchema(_Schema):
    """Report output."""

    path: str | None = "testrig-report.json"
    artifacts_dir: str | None = None
    capture: str | None = Field(default=None, description="Artifact capture module:callable")

    @field_validator("capture")
    @classmethod
    def validate_capture(cls, v: str | None) -> str | None:
        return _check_target(v)


class LoggingSchema(_Schema):
    """Logging settings."""

    level: str | int | bool = "info"
    colors: bool = True
    micros: bool = False

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: Any) -> Any:
        try:
            LogConfig.resolve_level(v)
        except InvalidLogLevelError as e:
            raise ValueError(str(e)) from e
        return v


class PipelineSchema(_Schema):
    """Root schema of a pipeline file."""

    vars: dict[str, Any] = Field(
        default_factory=dict, description="Free-form values referenced as ${vars.name}"
    )
    services: list[ServiceSchema] = Field(default_factory=list)
    installer: InstallerSchema
    tiers: list[TierSchema] = Field(default_factory=list)
    gate: GateSchema = Field(default_factory=GateSchema)
    report: ReportSchema = Field(default_factory=ReportSchema)
    logging: LoggingSchema = Field(default_factory=LoggingSchema)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "PipelineSchema":
        for kind, names in (
            ("service", [s.name for s in self.services]),
            ("tier", [t.name for t in self.tiers]),
        ):
            dupes = sorted({n for n in names if names.count(n) > 1})
            if dupes:
                raise ValueError(f"duplicate {kind} names: {', '.join(dupes)}")
        return self


def _format_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def validate_config(config_dict: dict[str, Any]) -> PipelineSchema:
    """
    Validate a pipeline configuration dictionary.

    Raises:
        ConfigError: If validation fails; the message names each offending path
    """
    try:
        return PipelineSchema.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {_format_errors(e)}") from e
