"""Series aggregation: raw rows -> one SeriesView per FilterState.

Steps, in order: drop rows without an x value, sort chronologically when the
x domain is date-like, apply the time window (cut-off + bucketing), then
either pivot by the group-by field or reconcile duplicate x values with the
chart's aggregation policy, and finally normalize to percent-of-total when
the display mode asks for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple

import pandas as pd

from core.colors import SUFFIX_TOKENS, suffix_token
from core.dates import bucket_label, chronological_order, classify_date, is_date_domain, window_start
from core.fields import ChartFields, FieldSpec, find_field, resolve_fields
from core.filters import FilterState, TimeWindow, get_time_window

AggregationPolicy = Literal["sum", "max"]
AGGREGATION_POLICIES: Tuple[str, ...] = ("sum", "max")

UNKNOWN_GROUP = "Unknown"
CURRENCY_FIELD = "currency"


@dataclass(frozen=True)
class SeriesView:
    x_key: str
    series_keys: Tuple[str, ...] = ()
    rows: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)
    is_date_domain: bool = False
    percent: bool = False

    @property
    def empty(self) -> bool:
        return not self.rows

    @property
    def x_values(self) -> List[Any]:
        return [row[self.x_key] for row in self.rows]

    def with_rows(self, rows: Iterable[Dict[str, Any]]) -> "SeriesView":
        return replace(self, rows=tuple(rows))

    def to_frame(self) -> pd.DataFrame:
        if not self.rows:
            return pd.DataFrame(columns=[self.x_key, *self.series_keys])
        return pd.DataFrame.from_records(list(self.rows), columns=[self.x_key, *self.series_keys])


def numericize(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    for col in cols:
        if col not in df.columns:
            continue
        series = df[col]
        if not pd.api.types.is_numeric_dtype(series):
            series = series.astype(str).str.replace(r"[^0-9eE.+\-]", "", regex=True)
        df[col] = pd.to_numeric(series, errors="coerce").fillna(0.0).astype(float)
    return df


def select_y_fields(fields: ChartFields, currency: Optional[str], suffixes: Sequence[str] = SUFFIX_TOKENS) -> Tuple[FieldSpec, ...]:
    """Keep y-fields matching the selected currency; fields without a currency suffix always stay."""
    if not currency or currency.upper() == "ALL":
        return fields.y
    wanted = currency.lower()
    kept = tuple(spec for spec in fields.y if suffix_token(spec.key, suffixes) in (None, wanted))
    return kept or fields.y


def all_series_keys(rows: Sequence[Mapping[str, Any]], fields: ChartFields) -> List[str]:
    """Every series key this dataset can produce, across all filter options, in first-appearance order."""
    y_keys = fields.y_keys
    if not rows or fields.group is None:
        return y_keys
    group_col = find_field(rows[0], fields.group.key)
    x_col = find_field(rows[0], fields.x.key)
    if group_col is None:
        return y_keys
    groups: List[str] = []
    for row in rows:
        if x_col is not None and row.get(x_col) is None:
            continue
        groups.append(_group_label(row.get(group_col)))
    groups = list(dict.fromkeys(groups))
    if len(y_keys) == 1:
        return groups
    return [f"{y}_{g}" for y in y_keys for g in groups]


def _group_label(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return UNKNOWN_GROUP
    return str(value)


def _filter_currency_rows(frame: pd.DataFrame, currency: Optional[str]) -> pd.DataFrame:
    if not currency or currency.upper() == "ALL" or frame.empty:
        return frame
    col = find_field({c: None for c in frame.columns}, CURRENCY_FIELD)
    if col is None:
        return frame
    values = frame[col]
    mask = values.isna() | values.astype(str).str.lower().eq(currency.lower())
    return frame[mask]


def apply_time_window(frame: pd.DataFrame, x: str, window: Optional[TimeWindow]) -> pd.DataFrame:
    """Cut rows to the window's look-back (anchored on the latest date) and relabel x with bucket labels."""
    if window is None or frame.empty:
        return frame
    instants = [classify_date(v).instant for v in frame[x].tolist()]
    anchor = max(i for i in instants if i is not None)
    start = window_start(anchor, window.granularity, window.periods)
    keep = [start is None or (i is not None and i >= start) for i in instants]
    frame = frame[keep].copy()
    if window.granularity:
        kept = [i for i, k in zip(instants, keep) if k]
        frame[x] = [bucket_label(i, window.granularity) for i in kept]
    return frame


def to_percent(wide: pd.DataFrame, keys: Sequence[str]) -> pd.DataFrame:
    if wide.empty or not keys:
        return wide
    cols = list(keys)
    totals = wide[cols].sum(axis=1)
    wide[cols] = wide[cols].div(totals.where(totals != 0), axis=0).mul(100.0).fillna(0.0)
    return wide


def _records(wide: pd.DataFrame, x: str, keys: Sequence[str]) -> Tuple[Dict[str, Any], ...]:
    out: List[Dict[str, Any]] = []
    for rec in wide[[x, *keys]].to_dict(orient="records"):
        row: Dict[str, Any] = {x: rec[x]}
        for key in keys:
            row[key] = float(rec[key])
        out.append(row)
    return tuple(out)


def _pivot_groups(frame: pd.DataFrame, x: str, group: str, y_cols: Sequence[str], y_keys: Sequence[str]) -> Tuple[pd.DataFrame, List[str]]:
    frame = frame.copy()
    frame[group] = [_group_label(v) for v in frame[group].tolist()]
    grouped = frame.groupby([x, group], sort=False)[list(y_cols)].sum().reset_index()
    x_order = list(dict.fromkeys(grouped[x].tolist()))
    group_order = list(dict.fromkeys(grouped[group].tolist()))

    wide = pd.DataFrame({x: x_order})
    keys: List[str] = []
    for y_col, y_key in zip(y_cols, y_keys):
        pivot = grouped.pivot(index=x, columns=group, values=y_col)
        for g in group_order:
            key = g if len(y_cols) == 1 else f"{y_key}_{g}"
            col = pivot[g] if g in pivot.columns else pd.Series(dtype=float)
            wide[key] = col.reindex(x_order).fillna(0.0).to_numpy(dtype=float)
            keys.append(key)
    return wide, keys


def aggregate(
    rows: Sequence[Mapping[str, Any]],
    fields: ChartFields,
    filters: Optional[FilterState] = None,
    *,
    policy: AggregationPolicy = "max",
) -> SeriesView:
    """Produce the SeriesView for one FilterState. Raises FieldNotFound on misconfigured fields."""
    if policy not in AGGREGATION_POLICIES:
        raise ValueError(f"Unknown aggregation policy: {policy!r}")
    filters = filters or FilterState()
    if not rows:
        return SeriesView(x_key=fields.x.key, percent=filters.is_percent)

    resolved = resolve_fields(rows[0], fields)
    x = resolved.x
    y_specs = select_y_fields(fields, filters.currency)
    y_keys = [spec.key for spec in y_specs]
    y_cols = [resolved.actual_y(k) for k in y_keys]

    frame = pd.DataFrame.from_records(list(rows))
    # Raw x objects, so a null in an int column cannot widen years to floats.
    frame[x] = pd.Series([row.get(x) for row in rows], index=frame.index, dtype=object)
    frame = frame[frame[x].notna()]
    frame = _filter_currency_rows(frame, filters.currency)
    if frame.empty:
        return SeriesView(x_key=x, percent=filters.is_percent)

    date_domain = is_date_domain(frame[x].tolist())
    if date_domain:
        frame = frame.iloc[chronological_order(frame[x].tolist())]
        frame = apply_time_window(frame, x, get_time_window(filters.time_window))
        if frame.empty:
            return SeriesView(x_key=x, is_date_domain=True, percent=filters.is_percent)

    frame = numericize(frame.copy(), y_cols)

    if resolved.group is not None:
        wide, keys = _pivot_groups(frame, x, resolved.group, y_cols, y_keys)
    else:
        merged = frame.groupby(x, sort=False)[y_cols].agg(policy).reset_index()
        wide = merged.rename(columns=dict(zip(y_cols, y_keys)))
        keys = list(y_keys)

    if filters.is_percent:
        wide = to_percent(wide, keys)

    return SeriesView(
        x_key=x,
        series_keys=tuple(keys),
        rows=_records(wide, x, keys),
        is_date_domain=date_domain,
        percent=filters.is_percent,
    )
