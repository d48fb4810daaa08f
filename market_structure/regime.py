from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence
import math

from .config import AnalysisConfig
from .levels import find_swings
from .models import Bias, Candle

STRUCTURE_DOWN = "Lower highs and lower lows"
STRUCTURE_UP = "Higher highs and higher lows"
STRUCTURE_MIXED = "Mixed structure (range/transition)"
STRUCTURE_UNCLEAR = "Structure unclear"


@dataclass(frozen=True)
class RegimeReading:
    label: str
    confidence: Optional[int]
    is_range: bool


def infer_structure(candles: Sequence[Candle], kind: str, cfg: Optional[AnalysisConfig] = None) -> str:
    cfg = cfg or AnalysisConfig()
    radius = cfg.params_for(kind).swing_radius
    swing_highs, swing_lows = find_swings([c.high for c in candles], [c.low for c in candles], radius)

    last_highs = swing_highs[-3:]
    last_lows = swing_lows[-3:]
    if len(last_highs) < 2 or len(last_lows) < 2:
        return STRUCTURE_UNCLEAR

    highs_down = last_highs[-1] < last_highs[-2]
    lows_down = last_lows[-1] < last_lows[-2]
    highs_up = last_highs[-1] > last_highs[-2]
    lows_up = last_lows[-1] > last_lows[-2]
    if highs_down and lows_down:
        return STRUCTURE_DOWN
    if highs_up and lows_up:
        return STRUCTURE_UP
    return STRUCTURE_MIXED


def infer_regime(
    last_close: float,
    ema_fast: Optional[float],
    ema_slow: Optional[float],
    ema_long: Optional[float],
    trend_strength: Optional[float],
    volatility_pct: Optional[float],
    cfg: Optional[AnalysisConfig] = None,
) -> RegimeReading:
    cfg = cfg or AnalysisConfig()
    strength = trend_strength if trend_strength is not None else 0.0

    price_vs_long: Optional[str] = None
    if ema_long is not None and last_close > 0:
        price_vs_long = "above EMA200" if last_close >= ema_long else "below EMA200"

    separation: Optional[float] = None
    if ema_fast is not None and ema_slow is not None:
        separation = abs((ema_fast - ema_slow) / max(abs(ema_slow), 0.000001))

    is_range = (separation if separation is not None else 1.0) < cfg.range_separation_pct
    if ema_fast is not None and ema_slow is not None:
        bull = ema_fast >= ema_slow
    else:
        bull = strength >= 0

    if is_range:
        label = "Range / consolidation"
    elif bull:
        if ema_long is not None and last_close < ema_long:
            label = "Bullish rebound (below EMA200)"
        elif price_vs_long:
            label = f"Bullish trend ({price_vs_long})"
        else:
            label = "Bullish trend"
    else:
        if ema_long is not None and last_close > ema_long:
            label = "Bearish pullback (above EMA200)"
        elif price_vs_long:
            label = f"Bearish trend ({price_vs_long})"
        else:
            label = "Bearish trend"

    if (volatility_pct or 0.0) >= cfg.high_volatility_pct:
        label += " (high volatility)"

    score = min(max(abs(strength) * 100.0, 0.0), 35.0)
    if separation is not None:
        score += min(separation * 5000.0, 45.0)
    if price_vs_long is not None:
        score += 10.0
    if is_range:
        score = min(score, 35.0)

    confidence: Optional[int] = None
    if score > 0:
        confidence = int(min(max(score, 10.0), 95.0) + 0.5)
    return RegimeReading(label=label, confidence=confidence, is_range=is_range)


def rsi_state(value: float, cfg: Optional[AnalysisConfig] = None) -> str:
    cfg = cfg or AnalysisConfig()
    if value >= cfg.rsi_overbought:
        return "overbought"
    if value <= cfg.rsi_oversold:
        return "oversold"
    if value > cfg.rsi_bull:
        return "bullish"
    if value < cfg.rsi_bear:
        return "bearish"
    return "neutral"


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def bias_score(
    last_close: float,
    ema_fast: Optional[float],
    ema_slow: Optional[float],
    ema_long: Optional[float],
    macd_hist: Optional[float],
    rsi: Optional[float],
    structure: str,
    regime_label: str,
    cfg: Optional[AnalysisConfig] = None,
) -> Bias:
    """Point tally turned into bullish/bearish/neutral percentages that sum to 100."""
    cfg = cfg or AnalysisConfig()
    bull = 0
    bear = 0

    if ema_fast is not None and ema_slow is not None:
        if ema_fast >= ema_slow:
            bull += 2
        else:
            bear += 2
    if ema_long is not None and last_close > 0:
        if last_close >= ema_long:
            bull += 2
        else:
            bear += 2
    if macd_hist is not None:
        if macd_hist >= 0:
            bull += 1
        else:
            bear += 1
    if rsi is not None and math.isfinite(rsi):
        state = rsi_state(rsi, cfg)
        if state in ("overbought", "bearish"):
            bear += 1
        elif state in ("oversold", "bullish"):
            bull += 1

    structure_lower = structure.lower()
    if "higher highs" in structure_lower:
        bull += 2
    elif "lower highs" in structure_lower:
        bear += 2

    regime_lower = regime_label.lower()
    if "bullish trend" in regime_lower:
        bull += 2
    elif "bearish trend" in regime_lower:
        bear += 2
    elif "bullish rebound" in regime_lower or "range" in regime_lower or "consolidation" in regime_lower:
        bull += 1
        bear += 1

    total = max(1, bull + bear)
    bullish = _round_half_up(bull / total * 100)
    bearish = _round_half_up(bear / total * 100)
    neutral = max(0, 100 - bullish - bearish)

    diff = abs(bullish - bearish)
    if diff <= 10:
        neutral = max(neutral, 20)
        remaining = 100 - neutral
        bullish = remaining // 2
        bearish = remaining - bullish
    elif diff <= 20:
        neutral = max(neutral, 10)
        remaining = 100 - neutral
        if bullish > bearish:
            bullish = min(bullish, remaining)
            bearish = remaining - bullish
        else:
            bearish = min(bearish, remaining)
            bullish = remaining - bearish
    else:
        # rounding can overshoot by one point when both sides round up
        overshoot = bullish + bearish + neutral - 100
        if overshoot > 0:
            if bullish >= bearish:
                bullish -= overshoot
            else:
                bearish -= overshoot
    return Bias(bullish=bullish, bearish=bearish, neutral=neutral)
