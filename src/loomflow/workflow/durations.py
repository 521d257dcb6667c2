"""Duration parsing helpers for workflow definitions."""

import re
from typing import Any

_DURATION_PATTERN = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?$")

DELAY_UNITS = {
    "second": 1.0,
    "minute": 60.0,
    "hour": 3600.0,
}


def parse_duration(duration: str) -> float:
    """Parse an ISO-8601 time duration (``PT1H30M5S``) into seconds.

    Only the time part is supported; fractional seconds are accepted.

    Raises:
        ValueError: If the string is not a supported duration
    """
    if not isinstance(duration, str):
        raise ValueError(f"Invalid duration format: {duration!r}")

    match = _DURATION_PATTERN.match(duration.strip())
    if not match or duration.strip() == "PT":
        raise ValueError(f"Invalid duration format: {duration}")

    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = float(match.group(3) or 0)
    return hours * 3600 + minutes * 60 + seconds


def coerce_timeout(value: Any) -> float | None:
    """Normalise an action ``timeout`` to seconds.

    Numbers are milliseconds, strings are ISO-8601 durations.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timeout: {value!r}")
    if isinstance(value, int | float):
        if value <= 0:
            raise ValueError(f"Timeout must be positive, got {value}")
        return value / 1000.0
    seconds = parse_duration(value)
    if seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {value}")
    return seconds


def delay_seconds(count: float, unit: str) -> float:
    """Convert a loop delay ``{count, unit}`` into seconds."""
    if unit not in DELAY_UNITS:
        raise ValueError(f"Invalid delay unit: {unit}")
    return count * DELAY_UNITS[unit]
