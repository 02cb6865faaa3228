"""
Factory for creating and configuring loggers.

Root loggers own a console handler; derived loggers are lightweight views
that share the root's handlers and inherit its level.
"""

import logging
import sys
from typing import Any, TextIO, cast

from .config import LogConfig
from .formatters import LogFormatter
from .logger import Logger


class LoggerFactory:
    """Factory for creating and configuring loggers."""

    @staticmethod
    def create_root(
        config: LogConfig,
        stream: TextIO | None = None,
        logger_class: type[Logger] = Logger,
    ) -> Logger:
        """
        Create the "/" root logger.

        Example:
            >>> config = LogConfig.from_params(level="info", colors=False)
            >>> lg = LoggerFactory.create_root(config)
            >>> lg.info("pipeline started", extra={"tiers": 3})
            [12:34:56,789] [I] pipeline started        [tiers:3] [/]
        """
        return LoggerFactory.create("/", config, stream, logger_class)

    @staticmethod
    def create(
        name: str,
        config: LogConfig,
        stream: TextIO | None = None,
        logger_class: type[Logger] = Logger,
        extra: dict[str, Any] | None = None,
    ) -> Logger:
        """
        Create a logger with its own console handler.

        Args:
            name: Logger name
            config: Logger configuration
            stream: Output stream (defaults to stderr)
            logger_class: Logger class to use
            extra: Pre-populated extra fields to include in all records

        Returns:
            Configured logger instance
        """
        lg = logger_class(name, config, extra)

        handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
        handler.setFormatter(LogFormatter(config))
        lg.addHandler(handler)
        lg.propagate = False
        lg.parent = logging.root

        logging.root.manager.loggerDict[name] = lg
        return lg

    @staticmethod
    def derive(
        parent: Logger, tags: str | list[str], extra: dict[str, Any] | None = None
    ) -> Logger:
        """
        Derive a "view" logger that delegates to root's handlers.

        Examples:
            >>> lg = LoggerFactory.derive(root, "gate")
            >>> lg.name
            '/gate'
            >>> LoggerFactory.derive(root, ["tier", "unit"]).name
            '/tier/unit'

        Args:
            parent: Parent logger instance
            tags: Single tag string or list of tags forming the hierarchy
            extra: Extra fields merged on top of the parent's

        Returns:
            Derived logger instance
        """
        if isinstance(tags, str):
            tags = [tags]

        prefix = parent.name if parent.name == "/" else parent.name + "/"
        name = prefix + "/".join(tags)

        root = parent._root_logger or parent
        existing = logging.root.manager.loggerDict.get(name)
        if isinstance(existing, Logger) and extra is None and existing._root_logger is root:
            return existing

        merged = dict(parent._extra)
        if extra:
            merged.update(extra)

        lg = cast(Logger, parent.__class__(name, parent.config, merged))
        lg.setLevel(logging.NOTSET)
        lg._root_logger = root
        lg.parent = parent
        lg.propagate = False

        if extra is None:
            logging.root.manager.loggerDict[name] = lg
        return lg
