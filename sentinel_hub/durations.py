"""
Parsing of duration strings such as '90s', '15m' or '1h30m'.
"""
import re
from datetime import timedelta

_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}

_COMPONENT = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)')

# Largest duration a signed 64-bit nanosecond count can hold (about 292 years)
MAX_DURATION_SECONDS = (2 ** 63 - 1) / 1e9


def parse_duration(value: str) -> timedelta:
    """
    Parse a sequence of number+unit pairs into a timedelta.

    Accepted units: ns, us (or µs), ms, s, m, h. The result must be positive
    and no longer than MAX_DURATION_SECONDS.

    Raises:
        ValueError: Empty, malformed, non-positive or out-of-range duration
    """
    text = value.strip()
    if not text:
        raise ValueError("Empty duration")

    seconds = 0.0
    position = 0
    while position < len(text):
        match = _COMPONENT.match(text, position)
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}")
        seconds += float(match.group(1)) * _UNITS[match.group(2)]
        position = match.end()

    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    if seconds > MAX_DURATION_SECONDS:
        raise ValueError(f"Duration too long: {value!r}")
    return timedelta(seconds=seconds)
