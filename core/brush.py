from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Hashable, List, Optional, Sequence

from core.dates import classify_date, is_date_domain
from core.filters import BrushDomain
from core.series import SeriesView

# Day 0 of the synthetic axis given to non-date x domains.
SYNTHETIC_ORIGIN = datetime(2000, 1, 1)


def _key(value: Any) -> Hashable:
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value


class BrushRangeMapper:
    """Continuous brush coordinates for one raw dataset.

    Date-like x values map to their classified instant. Any other x domain
    gets a synthetic day-per-value axis built once from first-appearance order,
    so the same selection always yields the same subset.
    """

    def __init__(self, x_values: Sequence[Any]):
        values = [v for v in x_values if v is not None]
        self.is_date_domain = is_date_domain(values)
        self._synthetic: Dict[Hashable, datetime] = {}
        if not self.is_date_domain:
            for value in values:
                key = _key(value)
                if key not in self._synthetic:
                    self._synthetic[key] = SYNTHETIC_ORIGIN + timedelta(days=len(self._synthetic))

    def coordinate(self, value: Any) -> Optional[datetime]:
        if self.is_date_domain:
            return classify_date(value).instant
        return self._synthetic.get(_key(value))

    def coordinates(self, view: SeriesView) -> List[Optional[datetime]]:
        return [self.coordinate(v) for v in view.x_values]

    def extent(self, view: SeriesView) -> Optional[BrushDomain]:
        coords = [c for c in self.coordinates(view) if c is not None]
        if not coords:
            return None
        return BrushDomain(start=min(coords), end=max(coords))

    def apply(self, view: SeriesView, domain: Optional[BrushDomain]) -> SeriesView:
        """Rows whose coordinate lies inside `domain` (inclusive); no domain means the view itself."""
        if domain is None:
            return view
        kept = []
        for row in view.rows:
            coord = self.coordinate(row[view.x_key])
            if coord is not None and domain.contains(coord):
                kept.append(row)
        return view.with_rows(kept)


def apply_brush(view: SeriesView, domain: Optional[BrushDomain], mapper: Optional[BrushRangeMapper] = None) -> SeriesView:
    mapper = mapper or BrushRangeMapper(view.x_values)
    return mapper.apply(view, domain)
