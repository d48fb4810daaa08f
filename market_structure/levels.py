"""Support/resistance level derivation: swings, clusters, micro and pivot levels, compaction.

All functions are pure. Tunables come from an explicit ``AnalysisConfig``;
none of them raise on short input, they just return fewer (or no) levels.
"""
from __future__ import annotations

from typing import List, Optional, Sequence, Tuple
import math

from .config import AnalysisConfig
from .models import Candle, KeyLevel
from .pricing import format_price, round_to_step, rounding_step

NOTE_SEPARATOR = " • "


def timeframe_kind(timeframe: str) -> str:
    raw = (timeframe or "").strip()
    lower = raw.lower()
    if "M" in raw or "mo" in lower:
        return "monthly"
    if "w" in lower:
        return "weekly"
    if "d" in lower:
        return "daily"
    return "intraday"


def _step(price: float, cfg: AnalysisConfig) -> float:
    return rounding_step(price, cfg.rounding_steps, cfg.min_rounding_step)


def _normalized(price: float) -> float:
    # Levels carry the price as it will be displayed so equal labels compare equal.
    return float(format_price(price))


def find_swings(highs: Sequence[float], lows: Sequence[float], radius: int) -> Tuple[List[float], List[float]]:
    """Swing highs/lows: strict extremes of a symmetric ``radius`` window, oldest first."""
    swing_highs: List[float] = []
    swing_lows: List[float] = []
    if len(highs) != len(lows) or len(highs) <= 2 * radius:
        return swing_highs, swing_lows

    for i in range(radius, len(highs) - radius):
        high = highs[i]
        low = lows[i]
        is_high = True
        is_low = True
        for j in range(i - radius, i + radius + 1):
            if j == i:
                continue
            if highs[j] >= high:
                is_high = False
            if lows[j] <= low:
                is_low = False
            if not is_high and not is_low:
                break
        if is_high:
            swing_highs.append(high)
        if is_low:
            swing_lows.append(low)
    return swing_highs, swing_lows


def cluster_levels(values: Sequence[float], tolerance_pct: float, step: float) -> List[float]:
    """Greedy mean-distance clustering; each cluster collapses to its rounded mean."""
    filtered = sorted(v for v in values if math.isfinite(v) and v > 0)
    if not filtered:
        return []

    clusters: List[List[float]] = []
    current = [filtered[0]]
    for value in filtered[1:]:
        mean = sum(current) / len(current)
        if abs(value - mean) / mean <= tolerance_pct:
            current.append(value)
        else:
            clusters.append(current)
            current = [value]
    clusters.append(current)

    reps = [round_to_step(sum(c) / len(c), step) for c in clusters]

    # dedupe, latest occurrence wins
    unique: List[float] = []
    seen = set()
    for value in reversed(reps):
        if value not in seen:
            seen.add(value)
            unique.append(value)
    unique.reverse()
    return unique


def _note_priority(note: Optional[str]) -> int:
    lower = (note or "").lower()
    if "swing" in lower or "recent" in lower:
        return 5
    if "pivot" in lower:
        return 4
    if "fib retracement" in lower:
        return 3
    if "fib extension" in lower:
        return 2
    return 1


def _merge_notes(cluster: Sequence[KeyLevel], max_fragments: int = 3) -> Optional[str]:
    fragments: List[str] = []
    for level in cluster:
        note = (level.note or "").strip()
        if not note:
            continue
        fragments.extend(p.strip() for p in note.split("•") if p.strip())

    seen = set()
    deduped: List[str] = []
    for frag in fragments:
        key = frag.lower()
        if key in seen:
            continue
        seen.add(key)
        deduped.append(frag)

    kept = [
        frag for frag in deduped
        if not any(len(other) > len(frag) and frag.lower() in other.lower() for other in deduped)
    ]
    if not kept:
        return None
    return NOTE_SEPARATOR.join(kept[:max_fragments])


def _representative(cluster: Sequence[KeyLevel], current_price: float) -> KeyLevel:
    # provenance first, proximity breaks ties; max() keeps the first on equal keys
    rep = max(cluster, key=lambda lvl: (_note_priority(lvl.note), -abs(lvl.price - current_price)))
    if len(cluster) == 1:
        return rep
    merged = _merge_notes(cluster)
    return KeyLevel(price=rep.price, note=merged if merged is not None else rep.note)


def compact_levels(
    levels: Sequence[KeyLevel],
    current_price: float,
    max_count: int,
    cfg: Optional[AnalysisConfig] = None,
) -> List[KeyLevel]:
    """Drop far levels, merge near-duplicates, cap the count around ``current_price``."""
    cfg = cfg or AnalysisConfig()
    parsed = [lvl for lvl in levels if math.isfinite(lvl.price) and lvl.price > 0]
    if current_price > 0:
        parsed = [
            lvl for lvl in parsed
            if abs(lvl.price - current_price) / current_price <= cfg.max_distance_pct
        ]
    parsed.sort(key=lambda lvl: lvl.price)
    if not parsed:
        return []

    tolerance = max(current_price * cfg.merge_tolerance_pct, _step(current_price, cfg) * cfg.merge_step_multiple)

    clusters: List[List[KeyLevel]] = []
    cluster = [parsed[0]]
    for lvl in parsed[1:]:
        if abs(lvl.price - cluster[-1].price) <= tolerance:
            cluster.append(lvl)
        else:
            clusters.append(cluster)
            cluster = [lvl]
    clusters.append(cluster)

    collapsed = sorted((_representative(c, current_price) for c in clusters), key=lambda lvl: lvl.price)
    if len(collapsed) <= max_count:
        return collapsed

    below = [lvl for lvl in collapsed if lvl.price <= current_price]
    above = [lvl for lvl in collapsed if lvl.price > current_price]
    half = max_count // 2
    pick_below = below[-half:] if half > 0 else []
    pick_above = above[: max_count - len(pick_below)]
    # one side short: fill from the other side's next-closest levels
    spare = max_count - len(pick_below) - len(pick_above)
    if spare > 0:
        extra = below[: len(below) - len(pick_below)]
        pick_below = extra[-spare:] + pick_below
    return sorted(pick_below + pick_above, key=lambda lvl: lvl.price)


def derive_swing_levels(
    candles: Sequence[Candle],
    current_price: float,
    kind: str,
    cfg: Optional[AnalysisConfig] = None,
) -> List[KeyLevel]:
    cfg = cfg or AnalysisConfig()
    params = cfg.params_for(kind)
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    if len(candles) <= 2 * params.swing_radius:
        return []

    swing_highs, swing_lows = find_swings(highs, lows, params.swing_radius)
    step = _step(current_price, cfg)
    clustered_highs = cluster_levels(swing_highs[-params.recent_swings:], cfg.cluster_tolerance_pct, step)
    clustered_lows = cluster_levels(swing_lows[-params.recent_swings:], cfg.cluster_tolerance_pct, step)

    levels: List[KeyLevel] = []
    for price in clustered_lows:
        note = "swing low cluster" if price <= current_price else "prior swing low (overhead)"
        levels.append(KeyLevel(price=_normalized(price), note=note))
    for price in clustered_highs:
        note = "swing high cluster" if price >= current_price else "prior swing high (below)"
        levels.append(KeyLevel(price=_normalized(price), note=note))

    levels.sort(key=lambda lvl: lvl.price)
    return compact_levels(levels[-cfg.swing_level_window:], current_price, cfg.max_levels, cfg)


def derive_micro_levels(
    candles: Sequence[Candle],
    current_price: float,
    kind: str,
    cfg: Optional[AnalysisConfig] = None,
) -> List[KeyLevel]:
    cfg = cfg or AnalysisConfig()
    if len(candles) < cfg.micro_min_bars:
        return []
    lookback = cfg.params_for(kind).micro_lookback
    recent = candles[-min(lookback, len(candles)):]
    step = _step(current_price, cfg)

    levels: List[KeyLevel] = []
    low = round_to_step(min(c.low for c in recent), step)
    if math.isfinite(low) and low > 0:
        levels.append(KeyLevel(price=_normalized(low), note=f"recent {len(recent)}-bar low"))
    high = round_to_step(max(c.high for c in recent), step)
    if math.isfinite(high) and high > 0:
        levels.append(KeyLevel(price=_normalized(high), note=f"recent {len(recent)}-bar high"))
    return levels


def pivot_levels(
    candles: Sequence[Candle],
    current_price: float,
    cfg: Optional[AnalysisConfig] = None,
) -> List[KeyLevel]:
    """Classic floor-trader pivots from the second-most-recent (last completed) bar."""
    cfg = cfg or AnalysisConfig()
    if len(candles) < 3:
        return []
    prev = candles[-2]
    high, low, close = prev.high, prev.low, prev.close
    if not (math.isfinite(high) and math.isfinite(low) and math.isfinite(close) and high > low > 0):
        return []

    p = (high + low + close) / 3.0
    raw = [
        ("Pivot", p),
        ("Pivot R1", 2.0 * p - low),
        ("Pivot S1", 2.0 * p - high),
        ("Pivot R2", p + (high - low)),
        ("Pivot S2", p - (high - low)),
    ]
    step = _step(current_price, cfg)
    levels: List[KeyLevel] = []
    for name, value in raw:
        price = round_to_step(value, step)
        if not (math.isfinite(price) and price > 0):
            continue
        levels.append(KeyLevel(price=_normalized(price), note=name))
    return levels


def merge_levels(
    base: Sequence[KeyLevel],
    extra: Sequence[KeyLevel],
    current_price: float,
    cfg: Optional[AnalysisConfig] = None,
) -> List[KeyLevel]:
    cfg = cfg or AnalysisConfig()
    return compact_levels(list(base) + list(extra), current_price, cfg.max_levels, cfg)


def derive_levels(
    candles: Sequence[Candle],
    current_price: float,
    kind: str,
    cfg: Optional[AnalysisConfig] = None,
) -> List[KeyLevel]:
    cfg = cfg or AnalysisConfig()
    swing = derive_swing_levels(candles, current_price, kind, cfg)
    extra = derive_micro_levels(candles, current_price, kind, cfg) + pivot_levels(candles, current_price, cfg)
    return merge_levels(swing, extra, current_price, cfg)
