"""
Duration parsing and formatting.

Configuration values such as probe intervals and deadlines accept either a
number of seconds or a compact duration string.

Example Usage:
    >>> delta_to_secs("1m30s")
    90.0
    >>> delta_to_secs("250ms")
    0.25
    >>> delta_str(90.0)
    '1m30s'
    >>> delta_str(0.25)
    '250ms'
"""

import math
import re

SECONDS_PER_DAY = 86400
SECONDS_PER_HOUR = 3600
SECONDS_PER_MINUTE = 60

_UNITS: dict[str, float] = {
    "d": SECONDS_PER_DAY,
    "h": SECONDS_PER_HOUR,
    "m": SECONDS_PER_MINUTE,
    "s": 1.0,
    "ms": 0.001,
}

# Units ordered from largest to smallest; each may appear at most once
_UNIT_ORDER = ["d", "h", "m", "s", "ms"]

_COMPONENT = re.compile(r"(\d+(?:\.\d+)?)(ms|d|h|m|s)")


class InvalidDurationError(ValueError):
    """Raised when an invalid duration value or string is provided."""

    pass


def delta_to_secs(value: str | int | float) -> float:
    """
    Parse a duration into seconds.

    Numbers are taken as seconds. Strings are a sequence of <number><unit>
    components in descending unit order (d, h, m, s, ms); a bare number
    string is also accepted.

    Raises:
        InvalidDurationError: If the value cannot be parsed or is negative
    """
    if isinstance(value, bool):
        raise InvalidDurationError(f"Duration must be a number or string, got {value!r}")

    if isinstance(value, (int, float)):
        secs = float(value)
        if math.isnan(secs) or math.isinf(secs) or secs < 0:
            raise InvalidDurationError(f"Invalid duration: {value!r}")
        return secs

    if not isinstance(value, str):
        raise InvalidDurationError(
            f"Duration must be a number or string, got {type(value).__name__}"
        )

    text = value.strip().replace(" ", "")
    if not text:
        raise InvalidDurationError("Duration string is empty")

    try:
        number = float(text)
    except ValueError:
        number = None
    if number is not None:
        return delta_to_secs(number)

    pos = 0
    total = 0.0
    last_index = -1
    for match in _COMPONENT.finditer(text):
        if match.start() != pos:
            raise InvalidDurationError(f"Invalid duration: {value!r}")
        number, unit = match.groups()
        index = _UNIT_ORDER.index(unit)
        if index <= last_index:
            raise InvalidDurationError(f"Units out of order or repeated in {value!r}")
        last_index = index
        total += float(number) * _UNITS[unit]
        pos = match.end()

    if pos != len(text) or last_index < 0:
        raise InvalidDurationError(f"Invalid duration: {value!r}")
    return total


def delta_str(secs: float) -> str:
    """
    Format seconds as a compact duration string.

    Sub-second values are shown in milliseconds; longer values are split
    into d/h/m/s components with zero components omitted.

    Raises:
        InvalidDurationError: If secs is negative or not finite
    """
    if not isinstance(secs, (int, float)) or isinstance(secs, bool):
        raise InvalidDurationError(f"Duration must be a number, got {secs!r}")
    if math.isnan(secs) or math.isinf(secs) or secs < 0:
        raise InvalidDurationError(f"Invalid duration: {secs!r}")

    if secs == 0:
        return "0s"
    if secs < 1:
        return f"{round(secs * 1000)}ms"

    remaining = int(round(secs))
    parts = []
    for unit in ("d", "h", "m"):
        size = int(_UNITS[unit])
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count}{unit}")
    if remaining or not parts:
        parts.append(f"{remaining}s")
    return "".join(parts)
