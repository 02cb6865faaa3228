"""Exceptions raised by the logging system."""

from typing import Any


class LogError(Exception):
    """Base exception for logging errors."""

    pass


class InvalidLogLevelError(LogError):
    """Raised when a log level name or value cannot be resolved."""

    def __init__(self, level: Any) -> None:
        self.level = level
        super().__init__(f"Invalid log level: {level!r}")
