"""
Shared helpers: spec value parsing, clock access and per-record log buffering
"""
from .parsing import parse_duration, parse_rate, parse_percent, format_duration
from .clock import utc_now
from .log_buffer import RecordLogBuffer

__all__ = [
    'parse_duration',
    'parse_rate',
    'parse_percent',
    'format_duration',
    'utc_now',
    'RecordLogBuffer',
]
