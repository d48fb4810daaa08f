from __future__ import annotations
from typing import List, Optional, Sequence, Tuple
import math

from .models import Candle

NAN = float("nan")


def is_defined(x: Optional[float]) -> bool:
    return x is not None and math.isfinite(x)


def last_defined(values: Sequence[float]) -> Optional[float]:
    """Last element if it is a finite number, else None."""
    if not values:
        return None
    v = values[-1]
    return v if is_defined(v) else None


def ema(values: Sequence[float], period: int) -> List[float]:
    """EMA seeded with the first value (not an SMA seed), one output per input."""
    if not values:
        return []
    k = 2.0 / (period + 1.0)
    out: List[float] = []
    prev = float(values[0])
    out.append(prev)
    for x in values[1:]:
        prev = float(x) * k + prev * (1.0 - k)
        out.append(prev)
    return out


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def rsi_wilder(closes: Sequence[float], period: int = 14) -> List[float]:
    out = [NAN] * len(closes)
    if period <= 0 or len(closes) < period + 1:
        return out

    # Wilder's smoothing, seeded with the simple average of the first `period` deltas
    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        ch = closes[i] - closes[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / period
    avg_loss = losses / period
    out[period] = _rsi_from_avgs(avg_gain, avg_loss)

    for i in range(period + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        gain = ch if ch > 0 else 0.0
        loss = -ch if ch < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out[i] = _rsi_from_avgs(avg_gain, avg_loss)
    return out


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr_wilder(candles: Sequence[Candle], period: int = 14) -> List[float]:
    out = [NAN] * len(candles)
    if period <= 0 or len(candles) < period:
        return out

    trs = [candles[0].high - candles[0].low]
    for i in range(1, len(candles)):
        trs.append(true_range(candles[i].high, candles[i].low, candles[i - 1].close))

    prev = sum(trs[:period]) / period
    out[period - 1] = prev
    for i in range(period, len(trs)):
        prev = prev * (period - 1) / period + trs[i] / period
        out[i] = prev
    return out


def macd(
    closes: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> Tuple[List[float], List[float], List[float]]:
    fast_ema = ema(closes, fast)
    slow_ema = ema(closes, slow)
    line = [f - s for f, s in zip(fast_ema, slow_ema)]
    sig = ema(line, signal)
    hist = [m - s for m, s in zip(line, sig)]
    return line, sig, hist


def linear_regression_slope(values: Sequence[float]) -> Optional[float]:
    n = len(values)
    if n < 3:
        return None
    x_mean = (n - 1) / 2.0
    y_mean = sum(values) / n
    num = 0.0
    den = 0.0
    for i, y in enumerate(values):
        dx = i - x_mean
        num += dx * (y - y_mean)
        den += dx * dx
    if not den > 0:
        return None
    return num / den


def trend_strength(
    closes: Sequence[float],
    ema_fast: Optional[float] = None,
    ema_slow: Optional[float] = None,
    *,
    min_bars: int = 60,
    max_bars: int = 120,
    min_valid: int = 50,
    slope_scale: float = 200.0,
) -> Optional[float]:
    """Signed 0..1 score from the log-price regression slope of recent closes."""
    if len(closes) < min_bars:
        return None
    lookback = min(max_bars, max(min_bars, len(closes)))
    recent = [v for v in closes[-lookback:] if math.isfinite(v) and v > 0]
    if len(recent) < min_valid:
        return None
    slope = linear_regression_slope([math.log(v) for v in recent])
    if slope is None:
        return None
    strength = min(abs(slope) * slope_scale, 1.0)
    if ema_fast is not None and ema_slow is not None:
        alignment = 1.0 if ema_fast >= ema_slow else -1.0
    else:
        alignment = 1.0 if slope >= 0 else -1.0
    return alignment * strength


def pct_change(new: float, old: float) -> Optional[float]:
    if old == 0:
        return None
    return (new - old) / old * 100.0
