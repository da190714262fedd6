"""
Parsing helpers for the string-typed values of chaos specs

Durations follow the Go duration grammar ("300ms", "1.5h", "2h45m") and
bandwidth rates are "<uint><unit>" with binary (1024) multipliers.
"""
import re
from datetime import timedelta

from ..errors import InvalidDurationError, InvalidRateError, MalformedSpecError

# Microseconds per unit
_DURATION_UNITS = {
    'ns': 0.001,
    'us': 1.0,
    'µs': 1.0,  # U+00B5 micro sign
    'μs': 1.0,  # U+03BC greek mu
    'ms': 1000.0,
    's': 1000.0 * 1000,
    'm': 60 * 1000.0 * 1000,
    'h': 60 * 60 * 1000.0 * 1000,
}

_DURATION_PART = re.compile(r'([0-9]*(?:\.[0-9]*)?)(ns|us|µs|μs|ms|s|m|h)')

# Checked longest-suffix first so "kbps" never matches as "bps"
_RATE_UNITS = ['tbps', 'gbps', 'mbps', 'kbps', 'bps']


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string into a timedelta"""
    if not isinstance(value, str):
        raise InvalidDurationError(f"invalid duration {value!r}")

    text = value
    sign = 1
    if text[:1] in ('-', '+'):
        sign = -1 if text[0] == '-' else 1
        text = text[1:]

    if text == '0':
        return timedelta(0)
    if not text:
        raise InvalidDurationError(f"invalid duration {value!r}")

    total_us = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise InvalidDurationError(f"invalid duration {value!r}")
        number, unit = match.groups()
        if number in ('', '.'):
            raise InvalidDurationError(f"invalid duration {value!r}")
        total_us += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    return sign * timedelta(microseconds=total_us)


def format_duration(delta: timedelta) -> str:
    """Render a timedelta in the compact form parse_duration accepts"""
    total = delta.total_seconds()
    if total == 0:
        return '0s'

    sign = '-' if total < 0 else ''
    total = abs(total)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)

    out = sign
    if hours:
        out += f"{int(hours)}h"
    if minutes:
        out += f"{int(minutes)}m"
    if seconds or out in ('', '-'):
        out += f"{seconds:g}s"
    return out


def parse_rate(value: str) -> int:
    """
    Parse a bandwidth rate such as "1mbps" into bytes per second.

    Units are case-insensitive and each step is a factor of 1024.
    """
    if not isinstance(value, str):
        raise InvalidRateError(f"invalid rate {value!r}")

    text = value.strip().lower()
    for i, unit in enumerate(_RATE_UNITS):
        if not text.endswith(unit):
            continue

        number = text[:-len(unit)].strip()
        if not re.fullmatch(r'[0-9]+', number, flags=re.ASCII):
            raise InvalidRateError(f"invalid rate {value!r}: {number!r} is not an unsigned integer")

        rate = int(number)
        for _ in range(len(_RATE_UNITS) - 1 - i):
            rate *= 1024
        return rate

    raise InvalidRateError(f"invalid rate unit in {value!r}")


def parse_percent(value, field_name: str = 'percent') -> float:
    """Parse a percentage given as a number or numeric string in [0, 100]"""
    try:
        percent = float(value)
    except (TypeError, ValueError):
        raise MalformedSpecError(f"{field_name} must be a number, got {value!r}")

    if not 0 <= percent <= 100:
        raise MalformedSpecError(f"{field_name} must be between 0 and 100, got {value!r}")
    return percent
