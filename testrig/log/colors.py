"""
Color management for the logging system.

Maps log levels to ANSI color sequences used by the console formatter.
"""

import logging

from .constants import LogConstants


class ColorManager:
    """Centralized ANSI color code management."""

    RED = "\x1b[31"
    GREEN = "\x1b[32"
    YELLOW = "\x1b[33"
    BLUE = "\x1b[34"
    MAGENTA = "\x1b[35"
    CYAN = "\x1b[36"
    DEFAULT = "\x1b[38"

    RESET = LogConstants.RESET

    COLORS: dict[int, str] = {
        LogConstants.TRACE: "\x1b[38;5;244",
        logging.DEBUG: "\x1b[38;5;32",
        logging.INFO: CYAN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: MAGENTA,
    }

    @staticmethod
    def get_color_for_level(level: int) -> str:
        """
        Get the color prefix for a log level.

        Args:
            level: Log level number

        Returns:
            Unterminated color escape sequence (append "m" or ";1m")
        """
        return ColorManager.COLORS.get(level, ColorManager.DEFAULT)

    @staticmethod
    def gray(level: int) -> str:
        """Gray color for metadata (0-23 range, clamped)."""
        level = max(0, min(level, 23))
        return f"\x1b[38;5;{232 + level}"
