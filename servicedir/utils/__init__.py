"""
Shared utilities: safe conversions and debouncing.
"""
from .helpers import (
    safe_str,
    safe_lower,
    safe_float,
    safe_int,
    generate_slug,
    parse_timestamp,
)
from .debounce import Debouncer

__all__ = [
    "safe_str",
    "safe_lower",
    "safe_float",
    "safe_int",
    "generate_slug",
    "parse_timestamp",
    "Debouncer",
]
