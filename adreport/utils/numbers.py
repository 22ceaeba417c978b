from __future__ import annotations

import re


_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")


def clamp_int(
    value,
    *,
    default: int,
    min_v: int | None = None,
    max_v: int | None = None,
) -> int:
    """Best-effort int conversion with optional clamping.

    - If conversion fails -> default.
    - If min_v/max_v provided -> clamp to bounds.
    """
    try:
        v = int(value)
    except Exception:
        v = int(default)

    if min_v is not None and v < int(min_v):
        v = int(min_v)
    if max_v is not None and v > int(max_v):
        v = int(max_v)
    return v


def coerce_numeric(value: str) -> int | float | str:
    """Return int/float for numeric-looking text, the original string otherwise."""
    s = (value or "").strip()
    if not s or not _NUMERIC_RE.match(s):
        return value
    try:
        if re.fullmatch(r"[+-]?\d+", s):
            return int(s)
        return float(s)
    except ValueError:
        return value
