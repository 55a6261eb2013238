from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import pandas as pd

from core.colors import ColorAssignment
from core.fields import ChartFields, FieldSpec
from core.formatting import format_field_name, format_value, format_x_label
from core.series import SeriesView

alt.data_transformers.disable_max_rows()

STACKED_TYPES = {"stacked-bar", "stacked_bar", "stacked-area"}
LINE_TYPES = {"line", "area", "time-series"}


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def _spec_for(key: str, fields: ChartFields) -> Optional[FieldSpec]:
    for spec in fields.y:
        if key == spec.key or key.startswith(f"{spec.key}_"):
            return spec
    return fields.y[0] if fields.y else None


def long_frame(view: SeriesView, fields: ChartFields, time_window: Optional[str] = None) -> pd.DataFrame:
    """Melt a SeriesView into x/series/value rows with display labels for tooltips."""
    wide = view.to_frame()
    if wide.empty or not view.series_keys:
        return pd.DataFrame(columns=["x", "label", "series", "value", "value_fmt", "display"])
    long = wide.melt(id_vars=[view.x_key], value_vars=list(view.series_keys), var_name="series", value_name="value")
    long = long.rename(columns={view.x_key: "x"})
    long["x"] = long["x"].astype(str)
    long["label"] = [format_x_label(x, time_window) for x in long["x"]]
    displays: List[str] = []
    formatted: List[str] = []
    for series, value in zip(long["series"], long["value"]):
        spec = _spec_for(series, fields)
        displays.append(spec.display_type if spec else "bar")
        formatted.append(format_value(value, spec.unit if spec else None, percent=view.percent))
    long["display"] = displays
    long["value_fmt"] = formatted
    return long


def build_chart(
    view: SeriesView,
    colors: ColorAssignment,
    fields: ChartFields,
    chart_type: str = "bar",
    *,
    time_window: Optional[str] = None,
    title: str = "",
) -> alt.Chart:
    long = long_frame(view, fields, time_window)
    if chart_type.lower() in LINE_TYPES and not long.empty:
        long["display"] = "line"
    keys = list(view.series_keys)
    x_order = [str(x) for x in view.x_values]
    stacked = chart_type.lower() in STACKED_TYPES or fields.group is not None

    hover = alt.selection_point(fields=["series"], on="mouseover", empty="all")
    color = alt.Color(
        "series:N",
        title=None,
        sort=keys,
        scale=alt.Scale(domain=keys, range=[colors.color(k) for k in keys]),
    )
    x = alt.X("x:O", title=format_field_name(fields.x.key), sort=x_order, axis=alt.Axis(labelAngle=-45))
    y_title = "Percent" if view.percent else ", ".join(format_field_name(k) for k in fields.y_keys)
    tooltip = [alt.Tooltip("label:N", title=format_field_name(fields.x.key)), "series:N", alt.Tooltip("value_fmt:N", title="Value")]

    base = alt.Chart(long)
    bars = (
        base.transform_filter(alt.datum.display == "bar")
        .mark_bar()
        .encode(
            x=x,
            y=alt.Y("value:Q", title=y_title, stack="zero" if stacked else None, axis=alt.Axis(format="~s", gridDash=[4, 4])),
            color=color,
            opacity=alt.condition(hover, alt.value(1), alt.value(0.3)),
            tooltip=tooltip,
        )
        .add_params(hover)
    )
    layers = [bars]
    if (long["display"] == "line").any():
        lines = (
            base.transform_filter(alt.datum.display == "line")
            .mark_line(point={"filled": True, "size": 40})
            .encode(x=x, y=alt.Y("value:Q", title=y_title), color=color, tooltip=tooltip)
        )
        layers.append(lines)
    chart = alt.layer(*layers) if len(layers) > 1 else bars
    return chart.properties(title=title or "", height=320)
