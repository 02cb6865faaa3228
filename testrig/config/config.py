"""
Pipeline configuration loading.

Loads a YAML pipeline definition, applies environment variable overrides
and resolves ${dotted.key} references against the loaded document.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from ..exceptions import ConfigError

# Refuse configuration files above 10 MB
MAX_CONFIG_SIZE_BYTES = 10 * 1024 * 1024

DEFAULT_ENV_PREFIX = "TESTRIG_"

# Top-level sections environment variables may override
OVERRIDABLE_SECTIONS = ("logging", "gate", "installer", "report")

_MISSING = object()
_VAR = re.compile(r"\$\{([a-zA-Z0-9_.]+)\}")


def _check_file_size(path: Path) -> None:
    size = path.stat().st_size
    if size > MAX_CONFIG_SIZE_BYTES:
        raise ConfigError(
            "configuration file too large", path=str(path), size=size
        )


def convert_env_value(value: str) -> bool | int | float | str | list[Any] | None:
    """
    Convert an environment variable string to an appropriate type.

    Handles null/none, true/false, comma separated lists, ints and floats;
    anything else stays a string.
    """
    if value.lower() in ("null", "none", ""):
        return None
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if "," in value:
        return [convert_env_value(v.strip()) for v in value.split(",")]
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass
    return value


class Config(dict):
    """
    Pipeline configuration loaded from YAML.

    Supports ${variable_name} substitution with values from the same file
    and environment overrides using the TESTRIG_ prefix.

    Environment Variable Override Format:
        TESTRIG_<SECTION>_<KEY>=value

    Examples:
        TESTRIG_LOGGING_LEVEL=debug
        TESTRIG_GATE_DEADLINE=5m
        TESTRIG_REPORT_ARTIFACTS_DIR=/tmp/artifacts

    Underscores inside keys are matched against the keys present in the
    file, so TESTRIG_INSTALLER_RETRY_DELAY sets installer.retry_delay.

    Example:
        config = Config("pipeline.yaml")
        config.get("gate.deadline")
    """

    def __init__(
        self,
        fname: str | Path | None = None,
        data: dict[str, Any] | None = None,
        enable_env_overrides: bool = True,
        env_prefix: str = DEFAULT_ENV_PREFIX,
    ) -> None:
        """
        Initialize configuration from a YAML file or a mapping.

        Args:
            fname: Path to the YAML pipeline file
            data: Configuration mapping (used when fname is None)
            enable_env_overrides: Whether to apply environment variable overrides
            env_prefix: Prefix for environment variables

        Raises:
            ConfigError: If the file is missing, unreadable, malformed, or
                references an undefined ${variable}
        """
        super().__init__()
        self._enable_env_overrides = enable_env_overrides
        self._env_prefix = env_prefix
        self.path: Path | None = None

        if fname is not None:
            self.path = Path(fname).resolve()
            content = self._read(self.path)
        else:
            content = dict(data or {})

        if self._enable_env_overrides:
            content = self._apply_env_overrides(content)
        self.update(content)
        self.update(self._resolve(dict(self)))

    def _read(self, path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise ConfigError("configuration file not found", path=str(path))
        _check_file_size(path)
        try:
            with open(path) as f:
                content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML: {e}", path=str(path)) from e
        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError("top level must be a mapping", path=str(path))
        return content

    @property
    def base_dir(self) -> Path:
        """Directory relative paths in the configuration are resolved against."""
        return self.path.parent if self.path is not None else Path.cwd()

    def has(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def get(self, key: str, default: Any = None) -> Any:  # type: ignore[override]
        """Get a value by dotted path (e.g. "gate.deadline")."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        current: Any = self
        for part in key.split("."):
            if isinstance(current, dict) and part in current:
                current = dict.__getitem__(current, part)
            elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                return _MISSING
        return current

    def _resolve(self, content: Any) -> Any:
        """Recursively resolve ${variable_name} references."""
        if isinstance(content, dict):
            return {k: self._resolve(v) for k, v in content.items()}
        if isinstance(content, list):
            return [self._resolve(v) for v in content]
        if isinstance(content, str):
            return _VAR.sub(self._substitute_var, content)
        return content

    def _substitute_var(self, match: re.Match) -> str:
        name = match.group(1)
        if not self.has(name):
            raise ConfigError("undefined variable", variable=name)
        return str(self.get(name))

    def _apply_env_overrides(self, data: dict[str, Any]) -> dict[str, Any]:
        for env_key, env_value in self._collect_env_vars().items():
            parts = env_key[len(self._env_prefix) :].lower().split("_")
            if parts[0] not in OVERRIDABLE_SECTIONS:
                # e.g. TESTRIG_DATABASE_URL exported to a nested run
                continue
            self._set_nested_value(data, parts, convert_env_value(env_value))
        return data

    def _collect_env_vars(self) -> dict[str, str]:
        return {
            key: value
            for key, value in os.environ.items()
            if key.startswith(self._env_prefix)
        }

    def _set_nested_value(self, data: dict, parts: list[str], value: Any) -> None:
        """
        Set a nested value addressed by underscore-split parts.

        At each level the longest run of parts naming an existing key wins.
        Otherwise the first part names the section at the top level, and
        the remaining parts name one new key below it.
        """
        current = data
        while parts:
            for size in range(len(parts), 0, -1):
                key = "_".join(parts[:size])
                if key in current:
                    break
            else:
                size = 1 if current is data else len(parts)
                key = "_".join(parts[:size])

            parts = parts[size:]
            if not parts:
                current[key] = value
                return
            if not isinstance(current.get(key), dict):
                if key in current and current[key] is not None:
                    # Cannot descend into a scalar or list
                    return
                current[key] = {}
            current = current[key]

    def get_env_overrides(self) -> dict[str, Any]:
        """Environment overrides that apply to this configuration."""
        if not self._enable_env_overrides:
            return {}
        overrides = {}
        for key, value in self._collect_env_vars().items():
            path = key[len(self._env_prefix) :].lower()
            if path.split("_")[0] in OVERRIDABLE_SECTIONS:
                overrides[path] = convert_env_value(value)
        return overrides
