from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import os
import yaml

from .pricing import DEFAULT_MIN_STEP, DEFAULT_ROUNDING_STEPS


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass(frozen=True)
class TimeframeParams:
    swing_radius: int
    recent_swings: int
    micro_lookback: int


DEFAULT_TIMEFRAME_PARAMS: Dict[str, TimeframeParams] = {
    "intraday": TimeframeParams(swing_radius=2, recent_swings=30, micro_lookback=40),
    "daily": TimeframeParams(swing_radius=3, recent_swings=50, micro_lookback=30),
    "weekly": TimeframeParams(swing_radius=4, recent_swings=80, micro_lookback=24),
    "monthly": TimeframeParams(swing_radius=4, recent_swings=100, micro_lookback=18),
}


@dataclass
class AnalysisConfig:
    # Indicators
    ema_fast: int = 20
    ema_slow: int = 50
    ema_long: int = 200
    rsi_len: int = 14
    atr_len: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9

    # RSI bands
    rsi_overbought: float = 68.0
    rsi_oversold: float = 32.0
    rsi_bull: float = 55.0
    rsi_bear: float = 45.0

    # Trend strength
    trend_min_bars: int = 60
    trend_max_bars: int = 120
    trend_min_valid: int = 50
    trend_slope_scale: float = 200.0

    # Regime
    range_separation_pct: float = 0.004
    high_volatility_pct: float = 3.0

    # Levels
    cluster_tolerance_pct: float = 0.006
    merge_tolerance_pct: float = 0.0012
    merge_step_multiple: float = 1.5
    max_distance_pct: float = 0.45
    max_levels: int = 10
    swing_level_window: int = 12
    micro_min_bars: int = 20
    rounding_steps: Tuple[Tuple[float, float], ...] = DEFAULT_ROUNDING_STEPS
    min_rounding_step: float = DEFAULT_MIN_STEP
    timeframes: Dict[str, TimeframeParams] = field(default_factory=lambda: dict(DEFAULT_TIMEFRAME_PARAMS))

    # Output
    min_levels_for_confluence: int = 6
    disclaimer: str = "Educational tool only - not financial advice."

    def params_for(self, kind: str) -> TimeframeParams:
        return self.timeframes.get(kind) or DEFAULT_TIMEFRAME_PARAMS["intraday"]


@dataclass
class ProviderConfig:
    rest_timeout_s: int = 20
    concurrency: int = 5
    binance_spot_url: str = "https://api.binance.com/api/v3/klines"
    binance_futures_url: str = "https://fapi.binance.com/fapi/v1/klines"
    stooq_url: str = "https://stooq.com/q/d/l/"


@dataclass
class RequestConfig:
    default_exchange: str = "binance-futures"
    default_symbol: str = "BTCUSDT"
    default_timeframe: str = "1h"
    default_limit: int = 220
    min_limit: int = 60
    max_limit: int = 600


@dataclass
class AppConfig:
    name: str = "Market Structure Analyzer"
    log_level: str = "INFO"


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    request: RequestConfig = field(default_factory=RequestConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)


def _analysis_from_raw(raw: Dict[str, Any]) -> AnalysisConfig:
    raw = dict(raw or {})
    tf_raw = raw.pop("timeframes", None) or {}
    steps_raw: Optional[List[List[float]]] = raw.pop("rounding_steps", None)

    timeframes = dict(DEFAULT_TIMEFRAME_PARAMS)
    for kind, params in tf_raw.items():
        base = timeframes.get(kind, DEFAULT_TIMEFRAME_PARAMS["intraday"])
        timeframes[kind] = TimeframeParams(
            swing_radius=int(params.get("swing_radius", base.swing_radius)),
            recent_swings=int(params.get("recent_swings", base.recent_swings)),
            micro_lookback=int(params.get("micro_lookback", base.micro_lookback)),
        )

    cfg = AnalysisConfig(**raw)
    cfg.timeframes = timeframes
    if steps_raw:
        cfg.rounding_steps = tuple((float(t), float(s)) for t, s in steps_raw)
    return cfg


def load_config(path: Optional[str] = None) -> Config:
    raw: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app") or {}),
        provider=ProviderConfig(**raw.get("provider") or {}),
        request=RequestConfig(**raw.get("request") or {}),
        analysis=_analysis_from_raw(raw.get("analysis") or {}),
    )

    # env overrides (useful on servers)
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")
    cfg.provider.rest_timeout_s = _env_override(cfg.provider.rest_timeout_s, "REST_TIMEOUT_S")
    cfg.provider.concurrency = _env_override(cfg.provider.concurrency, "PROVIDER_CONCURRENCY")
    cfg.request.default_exchange = _env_override(cfg.request.default_exchange, "DEFAULT_EXCHANGE")

    if cfg.request.min_limit > cfg.request.max_limit:
        raise ValueError(
            f"request.min_limit ({cfg.request.min_limit}) exceeds request.max_limit ({cfg.request.max_limit})"
        )
    return cfg
