from __future__ import annotations

import json

from market_structure.analysis import analyze_candles
from market_structure.models import Candle


def candle(idx: int, open_p: float, high: float, low: float, close: float, vol: float = 1.0) -> Candle:
    return Candle(open_time_ms=idx * 3_600_000, open=open_p, high=high, low=low, close=close, volume=vol)


def trending(n: int, step: float, spike: float = 2.0):
    """Steady drift with a spiked high every 7th bar and a spiked low in between."""
    out = []
    for i in range(n):
        close = 100.0 + step * i
        open_p = close - step
        high = max(open_p, close) + (spike if i % 7 == 3 else 0.2)
        low = min(open_p, close) - (spike if i % 7 == 0 else 0.2)
        out.append(candle(i, open_p, high, low, close))
    return out


def run_case(name: str, candles):
    payload = analyze_candles("Synthetic", "TEST", "1h", candles)
    d = payload.to_dict()
    print(f"{name}: regime={d['marketRegime']!r} structure={d['marketStructure']!r} bias={d['bias']}")
    print("  levels:", [(lvl["price"], lvl["kind"]) for lvl in d["supportResistance"]])


def main():
    run_case("uptrend", trending(300, 0.5))
    run_case("downtrend", trending(150, -0.5))
    run_case("flat", trending(120, 0.0))
    run_case("short", trending(5, 0.5))

    print("\nFull payload (uptrend):")
    print(json.dumps(analyze_candles("Synthetic", "TEST", "1h", trending(300, 0.5)).to_dict(), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
