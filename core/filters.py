from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from core.dates import classify_date

TIME_AXIS = "timeFilter"
CURRENCY_AXIS = "currencyFilter"
DISPLAY_MODE_AXIS = "displayModeFilter"

DISPLAY_ABSOLUTE = "absolute"
DISPLAY_PERCENT = "percent"


@dataclass(frozen=True)
class TimeWindow:
    key: str
    label: str
    granularity: Optional[str]
    periods: Optional[int] = None


TIME_WINDOWS: Dict[str, TimeWindow] = {
    "D": TimeWindow("D", "Daily, last 30 days", "day", periods=30),
    "W": TimeWindow("W", "Weekly, last 26 weeks", "week", periods=26),
    "M": TimeWindow("M", "Monthly, last 12 months", "month", periods=12),
    "Q": TimeWindow("Q", "Quarterly, last 8 quarters", "quarter", periods=8),
    "Y": TimeWindow("Y", "Yearly", "year"),
    "ALL": TimeWindow("ALL", "All data", None),
}


def get_time_window(key: Optional[str]) -> Optional[TimeWindow]:
    if not key:
        return None
    return TIME_WINDOWS.get(str(key).strip().upper())


@dataclass(frozen=True)
class FilterAxisConfig:
    name: str
    options: Tuple[str, ...]
    param_name: str = ""
    server_side: bool = False

    @property
    def default(self) -> Optional[str]:
        return self.options[0] if self.options else None


@dataclass(frozen=True)
class FilterState:
    time_window: Optional[str] = None
    currency: Optional[str] = None
    display_mode: Optional[str] = None
    extra: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def is_percent(self) -> bool:
        return (self.display_mode or "").strip().lower() in {DISPLAY_PERCENT, "%"}

    def get(self, axis: str) -> Optional[str]:
        return self.as_dict().get(axis)

    def as_dict(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        if self.time_window is not None:
            out[TIME_AXIS] = self.time_window
        if self.currency is not None:
            out[CURRENCY_AXIS] = self.currency
        if self.display_mode is not None:
            out[DISPLAY_MODE_AXIS] = self.display_mode
        out.update(dict(self.extra))
        return out

    def with_option(self, axis: str, value: Optional[str]) -> "FilterState":
        if axis == TIME_AXIS:
            return replace(self, time_window=value)
        if axis == CURRENCY_AXIS:
            return replace(self, currency=value)
        if axis == DISPLAY_MODE_AXIS:
            return replace(self, display_mode=value)
        extra = {k: v for k, v in self.extra if k != axis}
        if value is not None:
            extra[axis] = str(value)
        return replace(self, extra=tuple(sorted(extra.items())))

    def cache_key(self) -> str:
        values = self.as_dict()
        if not values:
            return "default"
        return "|".join(f"{k}:{v}" for k, v in sorted(values.items()))

    def server_params(self, axes: Iterable[FilterAxisConfig]) -> Dict[str, str]:
        values = self.as_dict()
        params: Dict[str, str] = {}
        for axis in axes:
            if not axis.server_side:
                continue
            value = values.get(axis.name, axis.default)
            if value is not None:
                params[axis.param_name or axis.name] = value
        return params


def _as_option(value: object) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def normalize_filters(raw: Optional[Mapping[str, object]], axes: Iterable[FilterAxisConfig] = ()) -> FilterState:
    raw = raw or {}
    axes = list(axes)
    state = FilterState()
    if not axes:
        for name, value in raw.items():
            option = _as_option(value)
            if option is not None:
                state = state.with_option(str(name), option)
        return state

    for axis in axes:
        option = _as_option(raw.get(axis.name))
        if axis.options and option not in axis.options:
            option = axis.default
        state = state.with_option(axis.name, option)
    return state


def server_axes_changed(before: FilterState, after: FilterState, axes: Iterable[FilterAxisConfig]) -> List[str]:
    old, new = before.as_dict(), after.as_dict()
    return [a.name for a in axes if a.server_side and old.get(a.name) != new.get(a.name)]


@dataclass(frozen=True)
class BrushDomain:
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


def _as_instant(value: object) -> Optional[datetime]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = classify_date(value)
    if parsed.instant is None:
        raise ValueError(f"Brush bound is not a recognizable date: {value!r}")
    return parsed.instant


def normalize_brush(start: object = None, end: object = None) -> Optional[BrushDomain]:
    """Return None for an empty interval; reversed bounds are swapped."""
    lo, hi = _as_instant(start), _as_instant(end)
    if lo is None or hi is None:
        return None
    if hi < lo:
        lo, hi = hi, lo
    return BrushDomain(start=lo, end=hi)
