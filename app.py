import asyncio
from contextlib import contextmanager
from typing import Dict, List, Optional

import altair as alt
import pandas as pd
import streamlit as st

from core.charts import build_chart
from core.data import DatasetCache
from core.errors import FieldNotFound
from core.filters import CURRENCY_AXIS, DISPLAY_ABSOLUTE, DISPLAY_MODE_AXIS, DISPLAY_PERCENT, TIME_AXIS, TIME_WINDOWS
from core.formatting import format_field_name
from core.pipeline import ChartPipeline, ChartState, chart_config
from core.settings import load_settings

alt.data_transformers.disable_max_rows()
SETTINGS = load_settings()


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;margin-bottom: 8px;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #f3f4f6;border: 1px solid #e5e7eb;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #374151;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str):
    container = st.container()
    container.markdown(f"<div class='card'><div class='card-title'>{title}</div>", unsafe_allow_html=True)
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def format_filter_summary(filters: Dict[str, str]) -> str:
    chips = [f"{format_field_name(k.replace('Filter', ''))}: {v}" for k, v in sorted(filters.items())] or ["Filters: default"]
    return "".join([f"<span class='chip'>{txt}</span>" for txt in chips])


def session_cache() -> DatasetCache:
    if "dataset_cache" not in st.session_state:
        st.session_state["dataset_cache"] = DatasetCache(SETTINGS.cache_max_entries)
    return st.session_state["dataset_cache"]


def split_list(text: str) -> List[str]:
    return [part.strip() for part in (text or "").split(",") if part.strip()]


async def _load(pipeline: ChartPipeline, refresh: bool) -> ChartState:
    try:
        return await pipeline.load(refresh=refresh)
    finally:
        await pipeline.close()


# ---------- UI setup ----------
st.set_page_config(page_title="Time-Series Chart Explorer", layout="wide")
inject_base_styles()
st.title("Time-Series Chart Explorer")
st.caption("Fetch a dataset, switch filters from the precomputed cache, and brush a date range.")

with st.sidebar:
    st.markdown("### Source")
    endpoint = st.text_input("Endpoint URL", "")
    api_key = st.text_input("API key (optional)", "", type="password")
    chart_type = st.selectbox("Chart type", ["bar", "stacked-bar", "line"], index=0)

    st.markdown("---")
    st.markdown("### Fields")
    x_axis = st.text_input("X field", "date")
    y_fields = split_list(st.text_input("Y fields (comma separated)", "protocol_revenue"))
    line_fields = st.multiselect("Draw as line", options=y_fields, default=[])
    unit = st.text_input("Unit", "$")
    group_by = st.text_input("Group by (optional)", "")

    st.markdown("---")
    with st.expander("Advanced settings", expanded=False):
        policy = st.radio("Duplicate x reconciliation", ["max", "sum"], index=0, horizontal=True)
        strip_suffixes = st.checkbox("Share colors across currency variants", value=True)
        currency_options = split_list(st.text_input("Currency options", "USD,SOL"))
        time_server_side = st.checkbox("Time window is filtered by the source", value=False)

    refresh = st.button("Refresh data")

axes = {
    TIME_AXIS: {"options": list(TIME_WINDOWS.keys()), "server_side": time_server_side},
    DISPLAY_MODE_AXIS: {"options": [DISPLAY_ABSOLUTE, DISPLAY_PERCENT]},
}
if currency_options:
    axes[CURRENCY_AXIS] = {"options": currency_options}

config = chart_config(
    {
        "chart_id": "explorer",
        "chart_type": chart_type,
        "endpoint": endpoint,
        "api_key": api_key or None,
        "x_axis": x_axis,
        "y_axis": [{"field": f, "type": "line" if f in line_fields else "bar", "unit": unit or None} for f in y_fields],
        "group_by": group_by or None,
        "filters": axes,
        "policy": policy,
        "strip_suffixes": strip_suffixes,
    }
)

# ----- Filter controls -----
c1, c2, c3 = st.columns([4, 2, 2])
with c1:
    time_window = st.radio(
        "Time window",
        list(TIME_WINDOWS.keys()),
        index=list(TIME_WINDOWS.keys()).index("ALL"),
        format_func=lambda k: TIME_WINDOWS[k].label,
        horizontal=True,
    )
with c2:
    currency = st.selectbox("Currency", currency_options) if currency_options else None
with c3:
    display_mode = st.radio("Display", [DISPLAY_ABSOLUTE, DISPLAY_PERCENT], index=0, horizontal=True)

selected: Dict[str, Optional[str]] = {TIME_AXIS: time_window, DISPLAY_MODE_AXIS: display_mode}
if currency:
    selected[CURRENCY_AXIS] = currency

pipeline = ChartPipeline(config, settings=SETTINGS, cache=session_cache(), filters=selected)
try:
    state = asyncio.run(_load(pipeline, refresh))
except FieldNotFound as exc:
    st.error(f"Chart configuration error: {exc}")
    st.stop()

st.markdown(f"<div class='chip-row'>{format_filter_summary(state.filters.as_dict())}</div>", unsafe_allow_html=True)
if state.notice:
    st.warning(state.notice)

# ----- Brush -----
extent = pipeline.brush_extent()
if extent is not None and extent.start < extent.end:
    # Keyed on the filter state so a filter change resets the brush.
    lo, hi = st.slider(
        "Date range",
        min_value=extent.start,
        max_value=extent.end,
        value=(extent.start, extent.end),
        format="YYYY-MM-DD",
        key=f"brush-{state.filters.cache_key()}",
    )
    if (lo, hi) != (extent.start, extent.end):
        state = pipeline.set_brush(lo, hi)

with card(config.title or "Chart"):
    if state.status == "empty":
        st.info("No data available.")
    elif state.status == "no-data-in-range":
        st.info("No data in the selected range.")
    else:
        chart = build_chart(state.displayed, state.colors, config.fields, config.chart_type, time_window=state.filters.time_window)
        st.altair_chart(chart, use_container_width=True)

if state.displayed is not None and not state.displayed.empty:
    export_df: pd.DataFrame = state.displayed.to_frame()
    st.download_button("Export CSV", data=export_df.to_csv(index=False).encode("utf-8"), file_name="chart.csv", mime="text/csv")
    with st.expander("Data", expanded=False):
        st.dataframe(export_df, hide_index=True)
