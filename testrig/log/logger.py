"""
Logger class for the logging system.

Extends the standard Python logger with structured extra fields, a TRACE
level and derived "view" loggers that share their root's handlers.
"""

import logging
from typing import Any

from .config import LogConfig
from .constants import LogConstants

# Record attribute carrying the merged extra fields
EXTRA_ATTR = "__testrig__extra"


class Logger(logging.Logger):
    """
    Enhanced logger with structured extra fields.

    Extra fields are kept apart from the record's own attributes, so keys
    such as "name" or "message" never collide with LogRecord internals:

        lg.info("dependency healthy", extra={"name": "db", "attempts": 3})
    """

    def __init__(
        self,
        name: str,
        config: LogConfig | None = None,
        extra: dict[str, Any] | None = None,
    ):
        """
        Initialize the logger.

        Args:
            name: Logger name ("/" for the root, "/gate" for children)
            config: Logger configuration (defaults to info level)
            extra: Pre-populated extra fields included in every record
        """
        if config is None:
            config = LogConfig()

        if config.level is False:
            super().__init__(name, logging.CRITICAL + 1)
        else:
            super().__init__(name, config.level)

        self._config = config
        self._extra = dict(extra or {})
        self._root_logger: Logger | None = None  # Set for derived loggers

    @property
    def config(self) -> LogConfig:
        """Get logger configuration."""
        return self._config

    @property
    def disabled_by_config(self) -> bool:
        """True when the configured level is False."""
        return self._config.level is False

    def makeRecord(  # type: ignore[override]
        self,
        name: str,
        level: int,
        fn: str,
        lno: int,
        msg: object,
        args: Any,
        exc_info: Any,
        func: str | None = None,
        extra: dict[str, Any] | None = None,
        sinfo: str | None = None,
    ) -> logging.LogRecord:
        """Create a log record carrying the merged extra fields."""
        merged = self._extra.copy()
        if extra:
            merged.update(extra)
        record = super().makeRecord(
            name, level, fn, lno, msg, args, exc_info, func=func, sinfo=sinfo
        )
        setattr(record, EXTRA_ATTR, merged)
        return record

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log a TRACE level message."""
        if self.isEnabledFor(LogConstants.TRACE):
            self._log(LogConstants.TRACE, msg, args, **kwargs)

    def callHandlers(self, record: logging.LogRecord) -> None:
        """
        Pass a record to all relevant handlers.

        Derived loggers have no handlers of their own and delegate to the
        root logger's handlers.
        """
        if self._root_logger is None:
            super().callHandlers(record)
            return

        for handler in self._root_logger.handlers:
            if record.levelno >= handler.level:
                handler.handle(record)
