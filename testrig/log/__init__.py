"""
Structured logging for testrig.

Extends Python's standard logging with:
- A custom TRACE level for per-attempt probe output
- Structured extra fields rendered as [key:value]
- Colored console output
- Derived "view" loggers named by path ("/", "/gate", "/tier/unit")
- Complete logging disable (level=False or level="false")
"""

import logging
from typing import Any, TextIO

from .config import LogConfig
from .constants import LogConstants
from .exceptions import InvalidLogLevelError, LogError
from .factory import LoggerFactory
from .formatters import LogFormatter
from .logger import Logger

logging.addLevelName(LogConstants.TRACE, "TRACE")


def resolve_level(s: str | int | bool) -> int | bool:
    """
    Resolve log level from string, numeric value, or boolean.

    Raises:
        InvalidLogLevelError: If the log level is invalid
    """
    return LogConfig.resolve_level(s)


def create_root_lg(
    level: str | int | bool = "info",
    micros: bool = False,
    colors: bool = True,
    stream: TextIO | None = None,
) -> Logger:
    """
    Create a root logger with the specified configuration.

    Example:
        >>> lg = create_root_lg("debug", colors=False)
    """
    config = LogConfig.from_params(level, micros=micros, colors=colors)
    return LoggerFactory.create_root(config, stream)


def derive_lg(lg: Logger, tags: str | list[str], extra: dict[str, Any] | None = None) -> Logger:
    """
    Derive a logger with tags from a parent logger.

    Example:
        >>> child_lg = derive_lg(parent_lg, "installer")
    """
    return LoggerFactory.derive(lg, tags, extra)


__all__ = [
    "Logger",
    "LoggerFactory",
    "LogConfig",
    "LogConstants",
    "LogFormatter",
    "LogError",
    "InvalidLogLevelError",
    "resolve_level",
    "create_root_lg",
    "derive_lg",
]
