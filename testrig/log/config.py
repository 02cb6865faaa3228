"""
Configuration for the logging system.

LogConfig is immutable so that a logger tree can share one instance across
threads without copying.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .constants import LogConstants
from .exceptions import InvalidLogLevelError


@dataclass(frozen=True)
class LogConfig:
    """
    Immutable configuration for root loggers.

    Derived loggers share their root's config and only override the level.
    """

    level: int | bool = logging.INFO  # False disables logging
    micros: bool = False
    colors: bool = True

    @staticmethod
    def resolve_level(level: str | int | bool) -> int | bool:
        """
        Resolve a level name, number or boolean into a numeric level.

        Raises:
            InvalidLogLevelError: If the level name is unknown
        """
        if isinstance(level, bool):
            return logging.INFO if level else False
        if isinstance(level, int):
            return level
        name = str(level).lower()
        if name.isnumeric():
            return int(name)
        if name in LogConstants.LEVEL_NAMES:
            return LogConstants.LEVEL_NAMES[name]
        raise InvalidLogLevelError(level)

    @classmethod
    def from_params(
        cls,
        level: str | int | bool,
        micros: bool = False,
        colors: bool = True,
    ) -> LogConfig:
        """
        Create LogConfig from individual parameters.

        Args:
            level: Log level (string name, numeric value, or False to disable logging)
            micros: Whether to show sub-second precision
            colors: Whether to enable colored output

        Returns:
            LogConfig instance
        """
        return cls(level=cls.resolve_level(level), micros=micros, colors=colors)

    @classmethod
    def from_config(cls, config_dict: dict[str, Any], section: str = "logging") -> LogConfig:
        """
        Create LogConfig from a configuration dictionary section.

        Example:
            config = Config("etc/pipeline.yaml")
            log_config = LogConfig.from_config(config.dict())
        """
        current: Any = config_dict
        for part in section.split("."):
            current = current.get(part, {}) if isinstance(current, dict) else {}
        if not isinstance(current, dict):
            current = {}

        return cls.from_params(
            level=current.get("level", "info"),
            micros=current.get("micros", False),
            colors=current.get("colors", True),
        )
