from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

PALETTE: Tuple[str, ...] = (
    "#00BFFF",
    "#1E90FF",
    "#40E0D0",
    "#4169E1",
    "#32CD32",
    "#7FFF00",
    "#ADFF2F",
    "#FFD700",
    "#FF9F68",
    "#FF6B6B",
    "#FF1493",
    "#FF69B4",
    "#FF00FF",
    "#BA55D3",
    "#9370DB",
    "#6A5ACD",
    "#DA70D6",
    "#AFEEEE",
    "#87CEEB",
    "#98FB98",
    "#00FA9A",
    "#EEE8AA",
    "#FFDAB9",
    "#FFA07A",
    "#9ACD32",
)

# Currency / chain qualifiers that mark variants of the same metric.
SUFFIX_TOKENS: Tuple[str, ...] = ("usd", "usdc", "usdt", "usde", "sol", "eth", "btc", "native")

_SUFFIX_RE = re.compile(r"^(?P<base>.*?)[\s_\-]*\(?(?P<token>[A-Za-z]+)\)?$")


def color_by_index(index: int) -> str:
    return PALETTE[index % len(PALETTE)]


def base_field_name(key: str, suffixes: Sequence[str] = SUFFIX_TOKENS) -> str:
    """Strip trailing currency/chain qualifiers: `revenue_usd` and `Revenue (SOL)` both become `revenue`."""
    tokens = {s.lower() for s in suffixes}
    base = str(key).strip()
    while True:
        m = _SUFFIX_RE.match(base)
        if not m or not m.group("base") or m.group("token").lower() not in tokens:
            break
        stripped = re.sub(r"[\s_\-(]+$", "", m.group("base"))
        if not stripped:
            break
        base = stripped
    return base.lower()


def suffix_token(key: str, suffixes: Sequence[str] = SUFFIX_TOKENS) -> Optional[str]:
    m = _SUFFIX_RE.match(str(key).strip())
    if not m or not m.group("base"):
        return None
    token = m.group("token").lower()
    return token if token in {s.lower() for s in suffixes} else None


def has_shared_bases(keys: Iterable[str], suffixes: Sequence[str] = SUFFIX_TOKENS) -> bool:
    seen: Dict[str, str] = {}
    for key in keys:
        base = base_field_name(key, suffixes)
        if base in seen and seen[base] != key:
            return True
        seen.setdefault(base, key)
    return False


@dataclass(frozen=True)
class ColorAssignment:
    indices: Mapping[str, int] = field(default_factory=dict)
    overrides: Mapping[str, str] = field(default_factory=dict)

    def index(self, key: str) -> Optional[int]:
        return self.indices.get(key)

    def color(self, key: str) -> str:
        if key in self.overrides:
            return self.overrides[key]
        return color_by_index(self.indices.get(key, 0))

    def as_colors(self) -> Dict[str, str]:
        return {key: self.color(key) for key in self.indices}


def assign_color_indices(
    all_keys: Sequence[str],
    *,
    strip_suffixes: bool = True,
    suffixes: Sequence[str] = SUFFIX_TOKENS,
) -> Dict[str, int]:
    """Color index for every key in the full key set.

    When suffix variants share a base name, the index follows the base name's
    first appearance in `all_keys`; otherwise it follows a stable sort of the
    full key set.
    """
    ordered = list(dict.fromkeys(str(k) for k in all_keys))
    if strip_suffixes and has_shared_bases(ordered, suffixes):
        base_order: Dict[str, int] = {}
        out: Dict[str, int] = {}
        for key in ordered:
            base = base_field_name(key, suffixes)
            if base not in base_order:
                base_order[base] = len(base_order)
            out[key] = base_order[base]
        return out
    return {key: idx for idx, key in enumerate(sorted(ordered))}


def assign_colors(
    active_keys: Iterable[str],
    all_keys: Sequence[str],
    *,
    preferred: Optional[Mapping[str, str]] = None,
    strip_suffixes: bool = True,
    suffixes: Sequence[str] = SUFFIX_TOKENS,
) -> ColorAssignment:
    active = list(dict.fromkeys(str(k) for k in active_keys))
    known = set(all_keys)
    universe = list(all_keys) + [k for k in active if k not in known]
    indices = assign_color_indices(universe, strip_suffixes=strip_suffixes, suffixes=suffixes)
    preferred = preferred or {}
    return ColorAssignment(
        indices={k: indices[k] for k in active},
        overrides={k: preferred[k] for k in active if preferred.get(k)},
    )


class ColorRegistry:
    """Per-dataset color memory: an index, once handed out, never changes."""

    def __init__(
        self,
        all_keys: Sequence[str] = (),
        *,
        preferred: Optional[Mapping[str, str]] = None,
        strip_suffixes: bool = True,
        suffixes: Sequence[str] = SUFFIX_TOKENS,
    ):
        self._known: List[str] = list(dict.fromkeys(str(k) for k in all_keys))
        self._assigned: Dict[str, int] = {}
        self._preferred = dict(preferred or {})
        self._strip = strip_suffixes
        self._suffixes = tuple(suffixes)

    @property
    def known_keys(self) -> List[str]:
        return list(self._known)

    def assign(self, active_keys: Iterable[str]) -> ColorAssignment:
        active = list(dict.fromkeys(str(k) for k in active_keys))
        new_keys = [k for k in active if k not in self._known]
        if new_keys:
            self._known.extend(new_keys)
        pending = [k for k in active if k not in self._assigned]
        if pending:
            indices = assign_color_indices(self._known, strip_suffixes=self._strip, suffixes=self._suffixes)
            for key in pending:
                self._assigned[key] = indices[key]
        return ColorAssignment(
            indices={k: self._assigned[k] for k in active},
            overrides={k: self._preferred[k] for k in active if self._preferred.get(k)},
        )
