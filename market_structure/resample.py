from __future__ import annotations
from typing import List, Sequence

from .models import Candle


def aggregate_candles(candles: Sequence[Candle], group_size: int) -> List[Candle]:
    """Collapse consecutive fixed-size windows into one bar each.

    Windows start at the first bar; a trailing partial window is dropped.
    Fewer bars than one window pass through unchanged.
    """
    if group_size <= 1 or len(candles) < group_size:
        return list(candles)

    usable = len(candles) - (len(candles) % group_size)
    out: List[Candle] = []
    for start in range(0, usable, group_size):
        window = candles[start:start + group_size]
        first = window[0]
        out.append(Candle(
            open_time_ms=first.open_time_ms,
            open=first.open,
            high=max(c.high for c in window),
            low=min(c.low for c in window),
            close=window[-1].close,
            volume=sum(c.volume for c in window),
        ))
    return out
