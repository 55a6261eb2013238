"""Core (UI-agnostic) chart pipeline logic.

This package contains:
- dataset fetch + session cache (httpx -> list of row dicts)
- field resolution, date classification and filter value objects
- series aggregation, filter precomputation and brushing (pandas)
- color assignment and chart helpers (Altair -> Vega-Lite spec dict)
"""
