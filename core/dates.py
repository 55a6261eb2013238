"""Single date classification policy shared by sorting, labeling and brushing.

Every textual date shape the dashboards receive is recognized here and
nowhere else, so chronological sorting, x-axis tick shortening and brush
coordinates can never disagree about what counts as a date.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Iterable, List, Literal, Optional, Sequence

DateKind = Literal[
    "iso",
    "us-slash",
    "day-month-year",
    "month-year",
    "quarter-year",
    "year",
    "aggregated-month",
    "aggregated-quarter",
    "ordinal",
]

ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ].*)?$")
AGG_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
AGG_QUARTER_RE = re.compile(r"^(\d{4})-Q([1-4])$", re.IGNORECASE)
US_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
DAY_MONTH_YEAR_RE = re.compile(r"^(\d{1,2})[-\s]([A-Za-z]{3,9})\.?[-\s](\d{4})$")
MONTH_YEAR_RE = re.compile(r"^([A-Za-z]{3,9})\.?[-\s]+(\d{4})$")
QUARTER_YEAR_RE = re.compile(r"^Q([1-4])\s+(\d{4})$", re.IGNORECASE)
YEAR_RE = re.compile(r"^(\d{4})$")

_MONTH_NAMES = [name.lower() for name in calendar.month_name[1:]]


@dataclass(frozen=True)
class DateClass:
    kind: DateKind
    instant: Optional[datetime] = None

    @property
    def is_date(self) -> bool:
        return self.kind != "ordinal" and self.instant is not None


ORDINAL = DateClass("ordinal")


def _month_index(name: str) -> Optional[int]:
    lowered = name.lower().rstrip(".")
    for idx, full in enumerate(_MONTH_NAMES, start=1):
        if len(lowered) >= 3 and full.startswith(lowered):
            return idx
    return None


def _safe_datetime(year: int, month: int, day: int = 1) -> Optional[datetime]:
    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_iso(text: str) -> Optional[datetime]:
    candidate = text.replace("Z", "+00:00") if text.endswith("Z") else text
    try:
        return _naive_utc(datetime.fromisoformat(candidate))
    except ValueError:
        pass
    m = ISO_RE.match(text)
    if not m:
        return None
    return _safe_datetime(int(m.group(1)), int(m.group(2)), int(m.group(3)))


@lru_cache(maxsize=8192)
def _classify_text(text: str) -> DateClass:
    s = text.strip()
    if not s:
        return ORDINAL

    if ISO_RE.match(s):
        instant = _parse_iso(s)
        return DateClass("iso", instant) if instant else ORDINAL

    m = AGG_MONTH_RE.match(s)
    if m:
        instant = _safe_datetime(int(m.group(1)), int(m.group(2)))
        return DateClass("aggregated-month", instant) if instant else ORDINAL

    m = AGG_QUARTER_RE.match(s)
    if m:
        instant = _safe_datetime(int(m.group(1)), (int(m.group(2)) - 1) * 3 + 1)
        return DateClass("aggregated-quarter", instant) if instant else ORDINAL

    m = US_SLASH_RE.match(s)
    if m:
        instant = _safe_datetime(int(m.group(3)), int(m.group(1)), int(m.group(2)))
        return DateClass("us-slash", instant) if instant else ORDINAL

    m = DAY_MONTH_YEAR_RE.match(s)
    if m:
        month = _month_index(m.group(2))
        instant = _safe_datetime(int(m.group(3)), month, int(m.group(1))) if month else None
        return DateClass("day-month-year", instant) if instant else ORDINAL

    m = MONTH_YEAR_RE.match(s)
    if m:
        month = _month_index(m.group(1))
        instant = _safe_datetime(int(m.group(2)), month) if month else None
        return DateClass("month-year", instant) if instant else ORDINAL

    m = QUARTER_YEAR_RE.match(s)
    if m:
        instant = _safe_datetime(int(m.group(2)), (int(m.group(1)) - 1) * 3 + 1)
        return DateClass("quarter-year", instant) if instant else ORDINAL

    m = YEAR_RE.match(s)
    if m:
        instant = _safe_datetime(int(m.group(1)), 1)
        return DateClass("year", instant) if instant else ORDINAL

    return ORDINAL


def classify_date(value: object) -> DateClass:
    """Classify a scalar as one of the recognized date encodings or "ordinal"."""
    if value is None or isinstance(value, bool) or value != value:
        return ORDINAL
    if isinstance(value, datetime):
        return DateClass("iso", _naive_utc(value.to_pydatetime() if hasattr(value, "to_pydatetime") else value))
    if isinstance(value, date):
        return DateClass("iso", datetime(value.year, value.month, value.day))
    if isinstance(value, int):
        return DateClass("year", datetime(value, 1, 1)) if 1000 <= value <= 9999 else ORDINAL
    if isinstance(value, str):
        return _classify_text(value)
    return ORDINAL


def is_date_domain(values: Iterable[object]) -> bool:
    seen = False
    for value in values:
        if value is None:
            continue
        seen = True
        if not classify_date(value).is_date:
            return False
    return seen


def chronological_order(values: Sequence[object]) -> List[int]:
    """Stable index order by classified instant; ties keep fetch order."""
    instants = [classify_date(v).instant for v in values]
    return sorted(range(len(values)), key=lambda i: (instants[i] is None, instants[i] or datetime.min))


def bucket_label(instant: datetime, granularity: Optional[str]) -> Optional[str]:
    if granularity == "day":
        return instant.strftime("%Y-%m-%d")
    if granularity == "week":
        monday = instant - timedelta(days=instant.weekday())
        return monday.strftime("%Y-%m-%d")
    if granularity == "month":
        return instant.strftime("%Y-%m")
    if granularity == "quarter":
        return f"{instant.year}-Q{(instant.month - 1) // 3 + 1}"
    if granularity == "year":
        return f"{instant.year:04d}"
    return None


def shift_months(instant: datetime, months: int) -> datetime:
    total = instant.year * 12 + (instant.month - 1) - months
    year, month = divmod(total, 12)
    if year < 1:
        return datetime.min
    month += 1
    day = min(instant.day, calendar.monthrange(year, month)[1])
    return instant.replace(year=year, month=month, day=day)


def bucket_start(instant: datetime, granularity: str) -> datetime:
    day = instant.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == "week":
        return day - timedelta(days=day.weekday())
    if granularity == "month":
        return day.replace(day=1)
    if granularity == "quarter":
        return day.replace(month=(day.month - 1) // 3 * 3 + 1, day=1)
    if granularity == "year":
        return day.replace(month=1, day=1)
    return day


def window_start(anchor: datetime, granularity: Optional[str], periods: Optional[int]) -> Optional[datetime]:
    """Inclusive lower bound covering exactly `periods` whole buckets, the last one holding `anchor`."""
    if granularity is None or not periods:
        return None
    start = bucket_start(anchor, granularity)
    back = periods - 1
    if granularity == "week":
        return start - timedelta(weeks=back)
    if granularity == "month":
        return shift_months(start, back)
    if granularity == "quarter":
        return shift_months(start, back * 3)
    if granularity == "year":
        return shift_months(start, back * 12)
    return start - timedelta(days=back)
