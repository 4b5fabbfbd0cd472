"""Lenient coercion helpers for loosely-typed design documents.

Design documents come straight from the editing surface: numbers may arrive
as strings ("120px", "50%"), keys may be missing, and nested records may be
null. These helpers never raise; they fall back to the supplied default.
"""

import math
import re
from typing import Any

_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(?:px)?\s*$")


def as_float(value: Any, default: float = 0.0) -> float:
    """Coerce a number or numeric string (``"12"``, ``"12px"``) to float."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else default
    if isinstance(value, str):
        match = _NUMBER_RE.match(value)
        if match:
            return float(match.group(1))
    return default


def as_dict(value: Any) -> dict[str, Any]:
    """Return value when it is a dict, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def parse_interval(value: Any) -> tuple[float, float]:
    """Parse a ``{from, to}`` millisecond interval.

    Negative values clamp to 0 and ``to`` is never less than ``from``.
    """
    interval = as_dict(value)
    start = max(0.0, as_float(interval.get("from"), 0.0))
    end = max(0.0, as_float(interval.get("to"), 0.0))
    return start, max(start, end)


def parse_opacity(value: Any, default: float = 1.0) -> float:
    """Parse an opacity given either as 0-100 (editor) or 0-1."""
    opacity = as_float(value, -1.0)
    if opacity < 0:
        return default
    if opacity > 1:
        opacity = opacity / 100
    return min(1.0, opacity)


def parse_hex_color(
    color: Any, default: tuple[int, int, int] = (255, 255, 255)
) -> tuple[int, int, int]:
    """Parse hex color string to (r, g, b). Falls back to default for invalid colors."""
    if not isinstance(color, str):
        return default
    hex_c = color.strip().lstrip("#")
    if len(hex_c) == 3:
        hex_c = "".join(c * 2 for c in hex_c)
    if len(hex_c) < 6 or not all(c in "0123456789abcdefABCDEF" for c in hex_c[:6]):
        return default
    return int(hex_c[0:2], 16), int(hex_c[2:4], 16), int(hex_c[4:6], 16)
