from __future__ import annotations

import logging
from typing import Optional

from ..config import ProviderConfig
from ..models import MarketCandles
from .base import CandleProvider
from .binance import BinanceProvider, is_futures_hint
from .stooq import StooqProvider

log = logging.getLogger("router")

MIN_LIMIT = 10
MAX_LIMIT = 1000


def clamp_limit(limit: int, lo: int = MIN_LIMIT, hi: int = MAX_LIMIT) -> int:
    return max(lo, min(hi, int(limit)))


class ProviderRouter:
    """Picks a candle provider from a free-form exchange hint."""

    def __init__(
        self,
        *,
        spot: Optional[CandleProvider] = None,
        futures: Optional[CandleProvider] = None,
        stooq: Optional[CandleProvider] = None,
        rest_timeout_s: int = 20,
    ):
        self.spot = spot or BinanceProvider("spot", rest_timeout_s=rest_timeout_s)
        self.futures = futures or BinanceProvider("futures", rest_timeout_s=rest_timeout_s)
        self.stooq = stooq or StooqProvider(rest_timeout_s=rest_timeout_s)

    @classmethod
    def from_config(cls, cfg: ProviderConfig) -> "ProviderRouter":
        return cls(
            spot=BinanceProvider("spot", rest_timeout_s=cfg.rest_timeout_s, klines_url=cfg.binance_spot_url),
            futures=BinanceProvider("futures", rest_timeout_s=cfg.rest_timeout_s, klines_url=cfg.binance_futures_url),
            stooq=StooqProvider(rest_timeout_s=cfg.rest_timeout_s, csv_url=cfg.stooq_url),
        )

    def select(self, exchange: str) -> CandleProvider:
        ex = (exchange or "").strip().lower()
        if "stooq" in ex:
            return self.stooq
        if is_futures_hint(ex):
            return self.futures
        return self.spot

    async def fetch(self, exchange: str, symbol: str, timeframe: str, limit: int) -> MarketCandles:
        provider = self.select(exchange)
        n = clamp_limit(limit)
        log.debug("fetch exchange=%s symbol=%s tf=%s limit=%d", exchange, symbol, timeframe, n)
        return await provider.fetch(symbol, timeframe, n)

    async def close(self) -> None:
        for provider in (self.spot, self.futures, self.stooq):
            await provider.close()
