from __future__ import annotations

import math
import re
from typing import Any, Optional

from core.dates import classify_date

NBSP = "\u00a0"
SUFFIX_UNITS = {"%", "SOL"}

_SCALES = ((1_000_000_000, "B"), (1_000_000, "M"), (1_000, "K"))


def _as_number(value: Any) -> Optional[float]:
    try:
        out = float(value)
    except Exception:
        return None
    if math.isnan(out) or math.isinf(out):
        return None
    return out


def format_value(value: Any, unit: Optional[str] = None, *, percent: bool = False) -> str:
    """Tooltip value: 2-decimal K/M/B scaling, currency units prefixed, `%`/`SOL` suffixed."""
    number = _as_number(value)
    if number is None:
        return "0.00"
    if percent:
        return f"{number:.1f}%"

    formatted = f"{number:.2f}"
    for scale, suffix in _SCALES:
        if abs(number) >= scale:
            formatted = f"{number / scale:.2f}{suffix}"
            break

    unit = (unit or "").strip()
    if not unit:
        return formatted
    if unit in SUFFIX_UNITS:
        return f"{formatted}{NBSP}{unit}"
    return f"{unit}{formatted}"


def format_tick_value(value: Any, *, percent: bool = False) -> str:
    number = _as_number(value)
    if number is None or number == 0:
        return "0%" if percent else "0"
    if percent:
        return f"{number:.0f}%"
    for scale, suffix in _SCALES:
        if abs(number) >= scale:
            text = f"{number / scale:.1f}"
            return f"{text[:-2] if text.endswith('.0') else text}{suffix}"
    if abs(number) < 1:
        return f"{number:.1f}"
    return f"{number:.0f}"


def format_field_name(name: str) -> str:
    """`protocol_revenue` / `protocol-revenue` -> `Protocol Revenue`."""
    words = [w for w in re.split(r"[_\-\s]+", str(name or "")) if w]
    return " ".join(w[:1].upper() + w[1:] for w in words)


def format_x_label(value: Any, time_window: Optional[str] = None) -> str:
    text = str(value)
    parsed = classify_date(value)

    if parsed.kind == "quarter-year":
        return text.strip()[:2].upper()
    if parsed.kind == "month-year":
        return text.strip()[:3]

    if parsed.is_date:
        instant = parsed.instant
        window = (time_window or "").upper()
        if window in {"D", "W"}:
            return f"{instant:%b} {instant.day}"
        if window == "M":
            return f"{instant:%b}"
        if window == "Q":
            return f"Q{(instant.month - 1) // 3 + 1}"
        if window == "Y" or parsed.kind == "year":
            return str(instant.year)
        if parsed.kind == "aggregated-month":
            return f"{instant:%b %Y}"
        if parsed.kind == "aggregated-quarter":
            return f"Q{(instant.month - 1) // 3 + 1} {instant.year}"
        return f"{instant:%b} {instant.day}"

    if len(text) <= 5:
        return text
    return f"{text[:3]}..."
