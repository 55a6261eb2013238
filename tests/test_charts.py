"""Tests for Altair chart construction from series views."""

from __future__ import annotations

import pytest

from core.charts import build_chart, long_frame, to_vega_spec
from core.colors import assign_colors
from core.fields import chart_fields
from core.filters import FilterState
from core.series import aggregate

pytestmark = pytest.mark.unit


ROWS = [
    {"month": "2024-01", "segment": "DEX", "revenue": 100},
    {"month": "2024-01", "segment": "Lending", "revenue": 50},
    {"month": "2024-02", "segment": "DEX", "revenue": 80},
]


def test_long_frame_melts_series_with_labels() -> None:
    fields = chart_fields("month", "revenue", group_by="segment")
    view = aggregate(ROWS, fields)
    long = long_frame(view, fields, time_window="M")

    assert list(long.columns) == ["x", "series", "value", "label", "display", "value_fmt"]
    assert len(long) == 4
    assert set(long["label"]) == {"Jan", "Feb"}


def test_color_scale_follows_assignment() -> None:
    fields = chart_fields("month", "revenue", group_by="segment")
    view = aggregate(ROWS, fields)
    colors = assign_colors(view.series_keys, view.series_keys, preferred={"DEX": "#000000"})

    spec = to_vega_spec(build_chart(view, colors, fields, "stacked-bar", title="Revenue"))

    scale = spec["encoding"]["color"]["scale"]
    assert scale["domain"] == ["DEX", "Lending"]
    assert scale["range"] == ["#000000", colors.color("Lending")]
    assert spec["encoding"]["y"]["stack"] == "zero"


def test_line_fields_add_a_line_layer() -> None:
    fields = chart_fields("month", [{"field": "revenue", "type": "bar"}, {"field": "users", "type": "line"}])
    rows = [{"month": "2024-01", "revenue": 1, "users": 2}]
    view = aggregate(rows, fields, FilterState())
    colors = assign_colors(view.series_keys, view.series_keys)

    spec = to_vega_spec(build_chart(view, colors, fields, "bar"))

    assert len(spec["layer"]) == 2
    assert spec["layer"][1]["mark"]["type"] == "line"


def test_empty_view_still_builds() -> None:
    fields = chart_fields("month", "revenue")
    view = aggregate([], fields)
    spec = to_vega_spec(build_chart(view, assign_colors([], []), fields))
    assert isinstance(spec, dict)
