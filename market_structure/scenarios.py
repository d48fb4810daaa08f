from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .models import KeyLevel, Scenario, TimeHorizonTargets
from .pricing import format_price


def _at(items: Sequence[KeyLevel], idx: int) -> Optional[str]:
    try:
        return items[idx].label
    except IndexError:
        return None


def _follow_through(values: Sequence[Optional[str]], fallback: str) -> str:
    seen = set()
    clean: List[str] = []
    for v in values:
        s = (v or "").strip()
        if not s or s in seen:
            continue
        seen.add(s)
        clean.append(s)
    if not clean:
        return fallback
    return "Potential follow-through toward " + ", ".join(clean)


def _up(p: str) -> str:
    return f"↑ {p}"


def _down(p: str) -> str:
    return f"↓ {p}"


def build_scenarios_and_targets(
    levels: Sequence[KeyLevel],
    last_price: float,
) -> Tuple[List[Scenario], TimeHorizonTargets]:
    numeric = sorted((lvl for lvl in levels if lvl.price > 0), key=lambda lvl: lvl.price)
    below = [lvl for lvl in numeric if lvl.price < last_price]
    above = [lvl for lvl in numeric if lvl.price > last_price]

    support = _at(below, -1)
    resistance = _at(above, 0)
    next_above = _at(above, 1)
    next_below = _at(below, -2)
    third_below = _at(below, -3)

    bullish = Scenario(
        name="Bullish",
        trigger=f"Acceptance above {resistance}" if resistance else "Acceptance above the nearest resistance",
        path=_follow_through([next_above, _at(above, 2)], "Continuation toward the next overhead levels"),
        invalidation=f"Back below {support}" if support else "Break back into the prior range",
    )
    bearish = Scenario(
        name="Bearish",
        trigger=f"Acceptance below {support}" if support else "Acceptance below the nearest support",
        path=_follow_through([next_below, third_below], "Continuation toward lower supports"),
        invalidation=f"Back above {resistance}" if resistance else "Reclaim of the breakdown level",
    )
    if support and resistance:
        range_trigger = f"Holds between {support} and {resistance}"
        range_path = f"Mean reversion between {support} ↔ {resistance}"
    else:
        range_trigger = "Consolidation inside the current range"
        range_path = "Rotation between nearby levels"
    if resistance:
        range_invalidation = f"Break and hold above {resistance} (bullish) or below {support or 'support'} (bearish)"
    else:
        range_invalidation = "Range expansion"
    ranging = Scenario(name="Range", trigger=range_trigger, path=range_path, invalidation=range_invalidation)

    targets = TimeHorizonTargets(
        short_term=[t for t in (resistance and _up(resistance), support and _down(support)) if t],
        medium_term=[t for t in (next_above and _up(next_above), next_below and _down(next_below)) if t],
        long_term=[_up(lvl.label) for lvl in reversed(above[-2:])] + [_down(lvl.label) for lvl in below[:2]],
    )
    return [bullish, bearish, ranging], targets


def build_summary(
    symbol: str,
    timeframe: str,
    last_close: float,
    change_pct: Optional[float],
    regime: str,
    structure: str,
    levels: Sequence[KeyLevel],
) -> str:
    change = f"{change_pct:+.2f}%" if change_pct is not None else "n/a"
    below = [lvl for lvl in levels if lvl.price < last_close]
    above = [lvl for lvl in levels if lvl.price > last_close]
    nearest_below = max(below, key=lambda lvl: lvl.price) if below else None
    nearest_above = min(above, key=lambda lvl: lvl.price) if above else None

    parts = [
        f"{symbol} {timeframe} last close {format_price(last_close)} ({change}).",
        f"{regime}. {structure}.",
    ]
    if nearest_below and nearest_above:
        parts.append(f"Nearest levels: {nearest_below.label} below, {nearest_above.label} above.")
    elif nearest_below:
        parts.append(f"Nearest support: {nearest_below.label}.")
    elif nearest_above:
        parts.append(f"Nearest resistance: {nearest_above.label}.")
    return " ".join(parts)
