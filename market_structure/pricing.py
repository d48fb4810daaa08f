from __future__ import annotations
from typing import Sequence, Tuple
import math


# (min abs price, step), checked top-down
DEFAULT_ROUNDING_STEPS: Tuple[Tuple[float, float], ...] = (
    (50000.0, 100.0),
    (10000.0, 50.0),
    (1000.0, 10.0),
    (100.0, 1.0),
    (1.0, 0.01),
    (0.1, 0.001),
)
DEFAULT_MIN_STEP = 0.0001


def rounding_step(
    price: float,
    steps: Sequence[Tuple[float, float]] = DEFAULT_ROUNDING_STEPS,
    min_step: float = DEFAULT_MIN_STEP,
) -> float:
    p = abs(price)
    for threshold, step in steps:
        if p >= threshold:
            return step
    return min_step


def round_to_step(value: float, step: float) -> float:
    if not step > 0:
        return value
    # half-up, then strip binary noise left by the multiply
    n = math.floor(value / step + 0.5)
    return round(n * step, 10)


def format_price(value: float) -> str:
    if value >= 1000:
        return f"{value:.0f}"
    if value >= 10:
        return f"{value:.2f}"
    if value >= 1:
        return f"{value:.4f}"
    if value >= 0.1:
        return f"{value:.5f}"
    if value >= 0.01:
        return f"{value:.6f}"
    return f"{value:.8f}"
