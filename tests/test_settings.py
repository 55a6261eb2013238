"""Tests for settings loading from mappings and environment."""

from __future__ import annotations

import pytest

from core.settings import PipelineSettings, load_settings

pytestmark = pytest.mark.unit


def test_defaults_with_empty_environment() -> None:
    assert load_settings(env={}) == PipelineSettings()


def test_environment_overrides() -> None:
    env = {
        "DASHBOARD_REQUEST_TIMEOUT": "5",
        "DASHBOARD_DEBOUNCE_SECONDS": "0.1",
        "DASHBOARD_CACHE_SIZE": "4",
        "DASHBOARD_LOG_LEVEL": "debug",
    }
    settings = load_settings(env=env)
    assert settings == PipelineSettings(request_timeout=5.0, debounce_seconds=0.1, cache_max_entries=4, log_level="DEBUG")


def test_explicit_values_win_over_environment() -> None:
    settings = load_settings({"cache_max_entries": 8}, env={"DASHBOARD_CACHE_SIZE": "4"})
    assert settings.cache_max_entries == 8


def test_bad_values_fall_back_to_defaults() -> None:
    settings = load_settings(
        {"request_timeout": "soon", "cache_max_entries": "many", "log_level": "LOUD", "debounce_seconds": -1},
        env={},
    )
    assert settings.request_timeout == 15.0
    assert settings.cache_max_entries == 32
    assert settings.log_level == "INFO"
    assert settings.debounce_seconds == 0.0
