"""Helpers for parsing size-valued configuration."""

import re

_UNIT_MULTIPLIERS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
}

_BYTES_PATTERN = re.compile(r"^(\d+)\s*([a-z]*)$")


def parse_bytes(value: int | str) -> int:
    """Parse a byte quantity from an integer or unit-suffixed string.

    Supported string units (case-insensitive): b, k, kb, m, mb, g, gb.
    A bare number is taken as bytes.

    Args:
        value: Raw value from a config file, environment variable or caller.

    Returns:
        The parsed value in bytes.

    Raises:
        ValueError: If the value is negative, malformed or has an unknown unit.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid byte value: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Byte value must not be negative: {value!r}")
        return value

    match = _BYTES_PATTERN.match(str(value).strip().lower())
    if match is None:
        raise ValueError(f"Invalid byte value: {value!r}")

    number, unit = match.groups()
    if unit not in _UNIT_MULTIPLIERS:
        raise ValueError(f"Unknown byte unit in value: {value!r}")
    return int(number) * _UNIT_MULTIPLIERS[unit]
