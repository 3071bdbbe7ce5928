"""Duration parsing utilities."""

import re
from datetime import timedelta

from supportsync.types import Duration

_DURATION_PATTERN = re.compile(r"^(\d+)(ms|s|m|h)$")
_UNITS: dict[str, int] = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
}


def parse_duration(duration: Duration) -> int:
    """Parse a duration to milliseconds.

    Accepts ``"250ms"``, ``"30s"``, ``"2m"``, ``"1h"``, a ``timedelta`` or a
    plain millisecond count.
    """
    if isinstance(duration, bool):
        raise ValueError(f"Invalid duration: {duration!r}")
    if isinstance(duration, int):
        if duration < 0:
            raise ValueError(f"Invalid duration: {duration!r}")
        return duration
    if isinstance(duration, timedelta):
        return int(duration.total_seconds() * 1000)

    match = _DURATION_PATTERN.match(duration)
    if not match:
        raise ValueError(f"Invalid duration: {duration!r}")

    value, unit = match.groups()
    return int(value) * _UNITS[unit]


def to_seconds(duration: Duration) -> float:
    """Parse a duration and express it in (fractional) seconds."""
    return parse_duration(duration) / 1000
