"""Tests for series aggregation (windowing, reconciliation, pivoting, percent mode)."""

from __future__ import annotations

import pytest

from core.brush import BrushRangeMapper
from core.errors import FieldNotFound
from core.fields import chart_fields
from core.filters import FilterState
from core.series import UNKNOWN_GROUP, aggregate, all_series_keys, select_y_fields

pytestmark = pytest.mark.unit


def test_daily_window_keeps_all_recent_rows_in_order(daily_rows, revenue_fields) -> None:
    """Ten daily rows under the daily window come back complete and chronological."""

    view = aggregate(daily_rows, revenue_fields, FilterState(time_window="D"))

    assert view.is_date_domain
    assert view.x_values == [f"2024-01-{d:02d}" for d in range(1, 11)]
    assert [row["revenue"] for row in view.rows] == [float(v) for v in range(10, 101, 10)]


def test_duplicate_x_takes_max_under_max_policy() -> None:
    rows = [{"date": "2024-01-01", "revenue": 100}, {"date": "2024-01-01", "revenue": 150}]
    view = aggregate(rows, chart_fields("date", "revenue"), policy="max")

    assert view.rows == ({"date": "2024-01-01", "revenue": 150.0},)


def test_duplicate_x_sums_under_sum_policy() -> None:
    rows = [{"date": "2024-01-01", "revenue": 100}, {"date": "2024-01-01", "revenue": 150}]
    view = aggregate(rows, chart_fields("date", "revenue"), policy="sum")

    assert view.rows == ({"date": "2024-01-01", "revenue": 250.0},)


def test_unknown_policy_is_rejected() -> None:
    with pytest.raises(ValueError):
        aggregate([{"x": "a", "y": 1}], chart_fields("x", "y"), policy="mean")  # type: ignore[arg-type]


def test_group_by_pivots_group_values_into_series() -> None:
    rows = [
        {"month": "2024-01", "segment": "DEX", "revenue": 100},
        {"month": "2024-01", "segment": "Lending", "revenue": 50},
    ]
    view = aggregate(rows, chart_fields("month", "revenue", group_by="segment"))

    assert view.series_keys == ("DEX", "Lending")
    assert view.rows == ({"month": "2024-01", "DEX": 100.0, "Lending": 50.0},)


def test_group_partitions_sum_and_missing_cells_are_zero() -> None:
    rows = [
        {"platform": "Orca", "segment": "DEX", "revenue": 10},
        {"platform": "Orca", "segment": "DEX", "revenue": 5},
        {"platform": "Drift", "segment": "Perps", "revenue": 7},
    ]
    view = aggregate(rows, chart_fields("platform", "revenue", group_by="segment"))

    assert not view.is_date_domain
    assert view.rows == (
        {"platform": "Orca", "DEX": 15.0, "Perps": 0.0},
        {"platform": "Drift", "DEX": 0.0, "Perps": 7.0},
    )


def test_multiple_y_with_group_uses_combined_keys() -> None:
    rows = [{"month": "2024-01", "segment": "DEX", "revenue": 1, "volume": 2}]
    view = aggregate(rows, chart_fields("month", ["revenue", "volume"], group_by="segment"))

    assert view.series_keys == ("revenue_DEX", "volume_DEX")


def test_null_group_becomes_unknown_series() -> None:
    rows = [{"month": "2024-01", "segment": None, "revenue": 3}]
    view = aggregate(rows, chart_fields("month", "revenue", group_by="segment"))

    assert view.series_keys == (UNKNOWN_GROUP,)


def test_percent_mode_sums_to_one_hundred() -> None:
    rows = [
        {"platform": "Orca", "fees": 1, "revenue": 3},
        {"platform": "Drift", "fees": 2, "revenue": 2},
        {"platform": "Zero", "fees": 0, "revenue": 0},
    ]
    view = aggregate(rows, chart_fields("platform", ["fees", "revenue"]), FilterState(display_mode="percent"))

    assert view.percent
    for row in view.rows[:2]:
        assert row["fees"] + row["revenue"] == pytest.approx(100.0)
    assert view.rows[0]["fees"] == pytest.approx(25.0)
    assert view.rows[2] == {"platform": "Zero", "fees": 0.0, "revenue": 0.0}


def test_rows_without_x_are_dropped_and_all_null_is_empty() -> None:
    fields = chart_fields("date", "revenue")
    view = aggregate([{"date": None, "revenue": 1}, {"date": "2024-01-02", "revenue": 2}], fields)
    assert view.x_values == ["2024-01-02"]

    empty = aggregate([{"date": None, "revenue": 1}], fields)
    assert empty.empty
    assert aggregate([], fields).empty


def test_missing_field_propagates() -> None:
    with pytest.raises(FieldNotFound):
        aggregate([{"date": "2024-01-01", "volume": 1}], chart_fields("date", "revenue"))


def test_aggregation_is_deterministic(daily_rows, revenue_fields) -> None:
    state = FilterState(time_window="W", display_mode="percent")
    assert aggregate(daily_rows, revenue_fields, state) == aggregate(daily_rows, revenue_fields, state)


def test_weekly_window_buckets_by_monday(daily_rows, revenue_fields) -> None:
    view = aggregate(daily_rows, revenue_fields, FilterState(time_window="W"), policy="sum")

    assert view.rows == (
        {"date": "2024-01-01", "revenue": 280.0},
        {"date": "2024-01-08", "revenue": 270.0},
    )


def test_monthly_window_cuts_to_last_twelve_months() -> None:
    rows = [{"date": f"{y}-{m:02d}-01", "revenue": 1} for y in (2022, 2023, 2024) for m in range(1, 13)]
    rows = [r for r in rows if r["date"] <= "2024-06-01"]
    view = aggregate(rows, chart_fields("date", "revenue"), FilterState(time_window="M"))

    assert view.x_values[0] == "2023-07"
    assert view.x_values[-1] == "2024-06"
    assert len(view.rows) == 12


def test_daily_window_keeps_exactly_thirty_days() -> None:
    rows = [{"date": f"2024-01-{d:02d}", "revenue": 1} for d in range(1, 32)]
    rows += [{"date": f"2024-02-{d:02d}", "revenue": 1} for d in range(1, 10)]
    view = aggregate(rows, chart_fields("date", "revenue"), FilterState(time_window="D"))

    assert len(view.rows) == 30
    assert view.x_values[0] == "2024-01-11"
    assert view.x_values[-1] == "2024-02-09"


def test_quarterly_window_keeps_eight_whole_quarters() -> None:
    """A mid-quarter anchor still yields eight quarters, the oldest one complete."""

    rows = [{"date": f"{y}-{m:02d}-15", "revenue": 1} for y in (2021, 2022, 2023, 2024) for m in range(1, 13)]
    rows = [r for r in rows if r["date"] <= "2024-05-15"]
    view = aggregate(rows, chart_fields("date", "revenue"), FilterState(time_window="Q"), policy="sum")

    assert view.x_values[0] == "2022-Q3"
    assert view.x_values[-1] == "2024-Q2"
    assert len(view.rows) == 8
    assert view.rows[0]["revenue"] == 3.0


def test_all_window_keeps_raw_labels(daily_rows, revenue_fields) -> None:
    view = aggregate(daily_rows, revenue_fields, FilterState(time_window="ALL"))
    assert len(view.rows) == 10


def test_string_amounts_are_numericized() -> None:
    rows = [{"platform": "Orca", "revenue": "$1,200"}, {"platform": "Drift", "revenue": "n/a"}]
    view = aggregate(rows, chart_fields("platform", "revenue"))

    assert [r["revenue"] for r in view.rows] == [1200.0, 0.0]


def test_string_column_amounts_keep_their_values() -> None:
    """Text-typed amount columns are cleaned before numeric coercion."""

    rows = [{"platform": "Orca", "revenue": "$1,200"}, {"platform": "Drift", "revenue": "$300.50"}]
    view = aggregate(rows, chart_fields("platform", "revenue"))

    assert [r["revenue"] for r in view.rows] == [1200.0, 300.5]


def test_integer_years_with_null_x_stay_a_date_domain() -> None:
    rows = [
        {"year": 2022, "revenue": 1},
        {"year": None, "revenue": 5},
        {"year": 2020, "revenue": 2},
    ]
    view = aggregate(rows, chart_fields("year", "revenue"))

    assert view.is_date_domain
    assert view.x_values == [2020, 2022]
    assert BrushRangeMapper([r["year"] for r in rows]).is_date_domain == view.is_date_domain


def test_currency_selects_matching_y_fields() -> None:
    fields = chart_fields("date", ["revenue_usd", "revenue_sol", "users"])
    assert [s.key for s in select_y_fields(fields, "SOL")] == ["revenue_sol", "users"]
    assert [s.key for s in select_y_fields(fields, None)] == ["revenue_usd", "revenue_sol", "users"]

    rows = [{"date": "2024-01-01", "revenue_usd": 10, "revenue_sol": 1, "users": 5}]
    view = aggregate(rows, fields, FilterState(currency="USD"))
    assert view.series_keys == ("revenue_usd", "users")


def test_currency_column_filters_rows() -> None:
    rows = [
        {"date": "2024-01-01", "currency": "USD", "revenue": 10},
        {"date": "2024-01-01", "currency": "SOL", "revenue": 1},
    ]
    view = aggregate(rows, chart_fields("date", "revenue"), FilterState(currency="SOL"))

    assert view.rows == ({"date": "2024-01-01", "revenue": 1.0},)


def test_all_series_keys_covers_every_group() -> None:
    rows = [
        {"date": "2024-01-01", "segment": "DEX", "revenue": 1},
        {"date": "2024-02-01", "segment": "Lending", "revenue": 1},
        {"date": "2024-02-01", "segment": "DEX", "revenue": 1},
    ]
    assert all_series_keys(rows, chart_fields("date", "revenue", group_by="segment")) == ["DEX", "Lending"]
    assert all_series_keys(rows, chart_fields("date", ["revenue", "fees"])) == ["revenue", "fees"]
