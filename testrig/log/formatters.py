"""
Log formatter for console output.

Renders records as:

    [12:34:56,789] [I] dependency healthy         [attempts:3] [name:db] [/gate]

with ANSI level colors when enabled. An "exception" extra field is rendered
as a traceback below the line.
"""

import logging
import traceback
from typing import Any

from .colors import ColorManager
from .config import LogConfig
from .constants import LogConstants
from .logger import EXTRA_ATTR


def _format_value(value: Any) -> str:
    """Render one extra field value."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(str(v) for v in value)
    if isinstance(value, float):
        return f"{value:.3f}".rstrip("0").rstrip(".")
    return str(value)


def _render_exception(exc: BaseException) -> str:
    """Render an exception with its traceback."""
    lines = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return "".join(lines).rstrip()


class LogFormatter(logging.Formatter):
    """Formatter rendering extra fields as [key:value] pairs."""

    def __init__(self, config: LogConfig) -> None:
        """
        Initialize the formatter.

        Args:
            config: Logger configuration (colors and sub-second precision)
        """
        super().__init__(LogConstants.DEFAULT_FORMAT)
        self._config = config

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """Format timestamp as H:M:S,ms with optional microseconds."""
        s = super().formatTime(record, "%H:%M:%S")
        s += f",{int(record.msecs):03d}"
        if self._config.micros:
            micros = int((record.created % 1) * 1_000_000) % 1000
            s += f"{micros:03d}"
        return s

    def _fields(self, record: logging.LogRecord) -> tuple[list[tuple[str, str]], Any]:
        extra = getattr(record, EXTRA_ATTR, None) or {}
        exc = extra.get("exception")
        fields = [
            (key, _format_value(extra[key])) for key in sorted(extra) if key != "exception"
        ]
        if exc is not None and not isinstance(exc, BaseException):
            fields.append(("exception", str(exc)))
            exc = None
        return fields, exc

    def format(self, record: logging.LogRecord) -> str:
        """Format a record into a single line (plus traceback if any)."""
        record.message = record.getMessage()
        record.asctime = self.formatTime(record)
        fields, exc = self._fields(record)

        head = f"[{record.asctime}] [{record.levelname[:1]}] {record.message}"
        rule = (
            LogConstants.MICRO_RULE_WIDTH
            if self._config.micros
            else LogConstants.DEFAULT_RULE_WIDTH
        )
        pad = " " * max(1, rule - len(head))
        tail = " ".join(f"[{k}:{v}]" for k, v in fields)
        name = f"[{record.name}]"

        if self._config.colors:
            col = ColorManager.get_color_for_level(record.levelno)
            gray = ColorManager.gray(9) + "m"
            reset = ColorManager.RESET
            line = col + "m" + head + reset + pad
            if tail:
                line += col + ";1m" + tail + reset + " "
            line += gray + name + reset
        else:
            line = head + pad + (tail + " " if tail else "") + name

        if exc is not None:
            line += "\n" + _render_exception(exc)
        elif record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
