"""Go-style duration strings ("30s", "5m", "1h30m") used by app configs."""

from __future__ import annotations

import re
from datetime import timedelta

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``"1h30m"`` or ``"500ms"``.

    The bare string ``"0"`` is accepted. Every other component needs a unit.
    """
    text = str(value).strip()
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError("invalid duration: empty string")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration: {value!r}")
        number, unit = match.groups()
        total += float(number) * _UNIT_SECONDS[unit]
        pos = match.end()

    try:
        return timedelta(seconds=total)
    except OverflowError as exc:
        raise ValueError(f"invalid duration: {value!r}") from exc


def format_duration(delta: timedelta) -> str:
    """Render a timedelta the way alert texts show it, e.g. ``1h2m3s``."""
    millis = round(delta.total_seconds() * 1000)
    if millis < 1000:
        return f"{millis}ms"

    # Whole tenths of a second, so rounding carries into minutes and hours
    tenths = round(delta.total_seconds() * 10)
    hours, rest = divmod(tenths, 36000)
    minutes, secs = divmod(rest, 600)

    parts: list[str] = []
    if hours:
        parts.append(f"{hours}h")
    if hours or minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs / 10:g}s")
    return "".join(parts)
