"""Cell conversion helpers.

Turn values fetched from a ``SHOW`` query into floats for samples or strings
for labels. Both conversions are total: they report failure through the
returned flag and never raise.
"""
from __future__ import annotations
import calendar
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Tuple

_NAN_TOKENS = ("nan", "-nan")

_STATUS_UP = ("true", "up", "waiting")
_STATUS_DOWN = ("false", "unused", "down")


def _unix_seconds(value: datetime) -> int:
    # naive timestamps are taken as UTC
    if value.tzinfo is None:
        return calendar.timegm(value.timetuple())
    return calendar.timegm(value.utctimetuple())


def _decode(value: Any) -> str:
    if isinstance(value, memoryview):
        value = value.tobytes()
    return value.decode("utf-8", errors="replace")


def _parse_float_text(text: str) -> Tuple[float, bool]:
    if text in _NAN_TOKENS:
        return math.nan, True
    # float() also takes digit separators and surrounding whitespace
    if "_" in text or text != text.strip():
        return math.nan, False
    try:
        return float(text), True
    except ValueError:
        return math.nan, False


def to_float(cell: Any) -> Tuple[float, bool]:
    """Convert a cell to a sample value.

    ``None`` maps to ``(nan, True)``: the value is absent, which is not a
    parse failure. Unparseable text and unknown types give ``(nan, False)``.
    """
    if cell is None:
        return math.nan, True
    if isinstance(cell, bool):
        return (1.0 if cell else 0.0), True
    if isinstance(cell, (int, float, Decimal)):
        return float(cell), True
    if isinstance(cell, datetime):
        return float(_unix_seconds(cell)), True
    if isinstance(cell, str):
        return _parse_float_text(cell)
    if isinstance(cell, (bytes, bytearray, memoryview)):
        return _parse_float_text(_decode(cell))
    return math.nan, False


def _format_number(value: float) -> str:
    if math.isfinite(value) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def to_label_string(cell: Any) -> Tuple[str, bool]:
    """Convert a cell to a label value. ``None`` becomes the empty string."""
    if cell is None:
        return "", True
    if isinstance(cell, bool):
        return ("true" if cell else "false"), True
    if isinstance(cell, int):
        return str(cell), True
    if isinstance(cell, (float, Decimal)):
        return _format_number(float(cell)), True
    if isinstance(cell, datetime):
        return str(_unix_seconds(cell)), True
    if isinstance(cell, str):
        return cell, True
    if isinstance(cell, (bytes, bytearray, memoryview)):
        return _decode(cell), True
    return "", False


def status_to_numeric(value: str) -> float:
    """Map a backend status token to 1.0 (up) or 0.0 (anything else)."""
    if value in _STATUS_UP:
        return 1.0
    if value in _STATUS_DOWN:
        return 0.0
    return 0.0
