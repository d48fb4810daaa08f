"""The analysis pipeline: candles in, immutable ``AnalysisPayload`` out.

Pure and deterministic. Short or empty input is not an error: levels come
back empty, structure is "Structure unclear" and confidence is None.
"""
from __future__ import annotations

from typing import List, Optional, Sequence

from .config import AnalysisConfig
from .indicators import atr_wilder, ema, last_defined, macd, pct_change, rsi_wilder, trend_strength
from .levels import derive_levels, timeframe_kind
from .models import AnalysisPayload, Candle
from .pricing import format_price
from .regime import bias_score, infer_regime, infer_structure, rsi_state
from .scenarios import build_scenarios_and_targets, build_summary


def analyze_candles(
    exchange: str,
    symbol: str,
    timeframe: str,
    candles: Sequence[Candle],
    cfg: Optional[AnalysisConfig] = None,
) -> AnalysisPayload:
    cfg = cfg or AnalysisConfig()
    kind = timeframe_kind(timeframe)
    closes = [c.close for c in candles]

    ema_fast = last_defined(ema(closes, cfg.ema_fast))
    ema_slow = last_defined(ema(closes, cfg.ema_slow))
    ema_long = last_defined(ema(closes, cfg.ema_long))
    rsi = last_defined(rsi_wilder(closes, cfg.rsi_len))
    atr = last_defined(atr_wilder(candles, cfg.atr_len))
    _, _, hist = macd(closes, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
    macd_hist = last_defined(hist)

    last_close = closes[-1] if closes else 0.0
    change = pct_change(last_close, closes[-2]) if len(closes) >= 2 else None

    strength = trend_strength(
        closes,
        ema_fast,
        ema_slow,
        min_bars=cfg.trend_min_bars,
        max_bars=cfg.trend_max_bars,
        min_valid=cfg.trend_min_valid,
        slope_scale=cfg.trend_slope_scale,
    )
    volatility_pct = atr / last_close * 100.0 if atr and last_close > 0 else None

    structure = infer_structure(candles, kind, cfg)
    regime = infer_regime(last_close, ema_fast, ema_slow, ema_long, strength, volatility_pct, cfg)
    levels = derive_levels(candles, last_close, kind, cfg)
    scenarios, targets = build_scenarios_and_targets(levels, last_close)

    confluence: List[str] = []
    indicators: List[str] = []
    risk_notes: List[str] = []

    if ema_fast is not None and ema_slow is not None:
        confluence.append("EMA20 above EMA50" if ema_fast >= ema_slow else "EMA20 below EMA50")
        indicators.append(f"EMA20: {format_price(ema_fast)} • EMA50: {format_price(ema_slow)}")
    if ema_long is not None and last_close > 0:
        confluence.append("Price above EMA200" if last_close >= ema_long else "Price below EMA200")
        indicators.append(f"EMA200: {format_price(ema_long)}")
    if rsi is not None:
        confluence.append(f"RSI(14) {rsi_state(rsi, cfg)}")
        indicators.append(f"RSI(14): {int(rsi + 0.5)}")
    if macd_hist is not None:
        confluence.append("MACD bullish" if macd_hist >= 0 else "MACD bearish")
    confluence.append(structure)
    if len(levels) >= cfg.min_levels_for_confluence:
        confluence.append(f"Derived {len(levels)} key levels from swings")
    indicators.append("Pattern: none clear")
    if volatility_pct is not None:
        indicators.append(f"ATR(14) as %: {volatility_pct:.2f}%")
        if volatility_pct >= cfg.high_volatility_pct:
            risk_notes.append(f"High volatility: ATR is {volatility_pct:.2f}% of price.")

    bias = bias_score(last_close, ema_fast, ema_slow, ema_long, macd_hist, rsi, structure, regime.label, cfg)
    summary = build_summary(symbol, timeframe, last_close, change, regime.label, structure, levels)

    return AnalysisPayload(
        symbol=symbol,
        timeframe=timeframe,
        exchange=exchange,
        summary=summary,
        market_regime=regime.label,
        regime_confidence=regime.confidence,
        market_structure=structure,
        last_close=last_close,
        support_resistance=list(levels),
        confluence=confluence,
        indicators=indicators,
        scenarios=scenarios,
        targets=targets,
        bias=bias,
        risk_notes=risk_notes,
        disclaimer=cfg.disclaimer,
    )
