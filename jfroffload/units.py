from __future__ import annotations

import re

_SIZE_PATTERN = re.compile(r"^\s*(?P<num>\d+(?:\.\d+)?)\s*(?P<unit>[a-zA-Z]{0,4})\s*$")
_SIZE_UNITS = {
    "": 1,
    "b": 1,
    "kb": 1000,
    "mb": 1000**2,
    "gb": 1000**3,
    "kib": 1024,
    "mib": 1024**2,
    "gib": 1024**3,
}
_DURATION_PATTERN = re.compile(r"^\s*(?P<num>\d+(?:\.\d+)?)\s*(?P<unit>ms|s|m|h)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "": 1.0,
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_size_bytes(raw: str | int | None, default: int) -> int:
    """
    Parse a human-readable size and return bytes.

    Accepted examples: "1048576", "200MB", "100MiB", "1 GB".
    Returns default for empty/invalid/non-positive inputs.
    """
    if isinstance(raw, int):
        return raw if raw > 0 else default
    match = _SIZE_PATTERN.match(raw or "")
    if not match:
        return default
    multiplier = _SIZE_UNITS.get(match.group("unit").lower())
    if multiplier is None:
        return default
    value = int(float(match.group("num")) * multiplier)
    return value if value > 0 else default


def parse_duration_seconds(raw: str | int | float | None) -> float:
    """
    Parse "500ms", "5s", "2m", "1h" or a bare number of seconds.

    Unlike parse_size_bytes this raises ValueError on bad input: durations come
    from config and API requests, where a silent fallback would hide mistakes.
    """
    if isinstance(raw, bool):
        raise ValueError(f"Invalid duration: {raw!r}")
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        match = _DURATION_PATTERN.match(raw or "")
        if not match:
            raise ValueError(f"Invalid duration: {raw!r}")
        value = float(match.group("num")) * _DURATION_UNITS[(match.group("unit") or "").lower()]
    if value < 0:
        raise ValueError(f"Duration must not be negative: {raw!r}")
    return value
