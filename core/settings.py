from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class PipelineSettings:
    request_timeout: float = 15.0
    debounce_seconds: float = 0.3
    cache_max_entries: int = 32
    log_level: str = "INFO"


ENV_KEYS = {
    "request_timeout": "DASHBOARD_REQUEST_TIMEOUT",
    "debounce_seconds": "DASHBOARD_DEBOUNCE_SECONDS",
    "cache_max_entries": "DASHBOARD_CACHE_SIZE",
    "log_level": "DASHBOARD_LOG_LEVEL",
}


def _as_float(value: object, default: float, *, minimum: float = 0.0) -> float:
    try:
        out = float(value)  # type: ignore[arg-type]
    except Exception:
        return default
    return max(minimum, out)


def _as_int(value: object, default: int, *, minimum: int = 1) -> int:
    try:
        out = int(value)  # type: ignore[arg-type]
    except Exception:
        return default
    return max(minimum, out)


def load_settings(raw: Optional[Mapping[str, object]] = None, env: Optional[Mapping[str, str]] = None) -> PipelineSettings:
    """Build settings from an explicit mapping, then environment overrides, then defaults."""
    env = os.environ if env is None else env
    merged = dict(raw or {})
    for attr, env_key in ENV_KEYS.items():
        if attr not in merged and env.get(env_key):
            merged[attr] = env[env_key]

    defaults = PipelineSettings()
    level = str(merged.get("log_level", defaults.log_level)).strip().upper()
    if level not in logging.getLevelNamesMapping():
        level = defaults.log_level

    return PipelineSettings(
        request_timeout=_as_float(merged.get("request_timeout", defaults.request_timeout), defaults.request_timeout, minimum=0.1),
        debounce_seconds=_as_float(merged.get("debounce_seconds", defaults.debounce_seconds), defaults.debounce_seconds),
        cache_max_entries=_as_int(merged.get("cache_max_entries", defaults.cache_max_entries), defaults.cache_max_entries),
        log_level=level,
    )
