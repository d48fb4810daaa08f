from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

import aiohttp

from ..errors import NoDataReturned, ResponseParseFailed, UpstreamRequestFailed
from ..models import Candle, MarketCandles

log = logging.getLogger("binance")

SPOT_KLINES_URL = "https://api.binance.com/api/v3/klines"
FUTURES_KLINES_URL = "https://fapi.binance.com/fapi/v1/klines"

# minutes -> Binance interval
_MINUTE_INTERVALS: Dict[int, str] = {
    1: "1m",
    3: "3m",
    5: "5m",
    15: "15m",
    30: "30m",
    60: "1h",
    120: "2h",
    180: "3h",
    240: "4h",
    360: "6h",
    480: "8h",
    720: "12h",
    1440: "1d",
    10080: "1w",
}

_UNIT_RE = re.compile(r"[mhdw]")
_MINUTES_RE = re.compile(r"^(\d+)m$")


def is_futures_hint(exchange: str) -> bool:
    ex = (exchange or "").strip().lower()
    return "futures" in ex or "perp" in ex or "fapi" in ex


def normalize_binance_timeframe(timeframe: str) -> str:
    trimmed = (timeframe or "").strip()
    if not trimmed:
        return timeframe

    lowered = trimmed.lower()
    if _UNIT_RE.search(lowered):
        cleaned = lowered.replace(" ", "")
        m = _MINUTES_RE.match(cleaned)
        if m:
            minutes = int(m.group(1))
            # only fold minute counts into larger units
            if minutes >= 60 and minutes in _MINUTE_INTERVALS:
                return _MINUTE_INTERVALS[minutes]
        return cleaned

    digits = re.sub(r"[^0-9]", "", lowered)
    if not digits:
        return trimmed
    return _MINUTE_INTERVALS.get(int(digits), trimmed)


def normalize_binance_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper().replace(" ", "").replace("/", "").replace("-", "")


def _finite(x: Any) -> Optional[float]:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def parse_klines(raw: Any) -> List[Candle]:
    if not isinstance(raw, list):
        raise ResponseParseFailed("Binance response parsing failed.")

    out: List[Candle] = []
    for row in raw:
        if not isinstance(row, list) or len(row) < 6:
            continue
        vals = [_finite(x) for x in row[:6]]
        if any(v is None for v in vals):
            continue
        # [0]=open time, [1..4]=OHLC, [5]=base volume
        out.append(Candle(
            open_time_ms=int(vals[0]),
            open=vals[1],
            high=vals[2],
            low=vals[3],
            close=vals[4],
            volume=vals[5],
        ))
    if not out:
        raise NoDataReturned("No candles returned from Binance.")
    return out


class BinanceProvider:
    def __init__(
        self,
        market: str = "futures",
        *,
        rest_timeout_s: int = 20,
        klines_url: Optional[str] = None,
    ):
        self.market = market
        self.rest_timeout_s = rest_timeout_s
        self.klines_url = klines_url or (FUTURES_KLINES_URL if market == "futures" else SPOT_KLINES_URL)
        self.exchange_label = "Binance Futures" if market == "futures" else "Binance"
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout())
        return self._session

    async def _get_text(self, url: str, params: Dict[str, Any]) -> str:
        sess = await self._get_session()
        try:
            async with sess.get(url, params=params) as resp:
                try:
                    text = await resp.text()
                except UnicodeDecodeError as e:
                    raise ResponseParseFailed("Binance response parsing failed.") from e
                if resp.status < 200 or resp.status >= 300:
                    raise UpstreamRequestFailed(f"Binance request failed ({resp.status}): {text[:140]}")
                return text
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise UpstreamRequestFailed(f"Binance request failed: {str(e) or type(e).__name__}") from e

    async def fetch_klines(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        params = {"symbol": symbol, "interval": interval, "limit": int(limit)}
        text = await self._get_text(self.klines_url, params)
        try:
            # Some proxies return a wrong content-type; parse the body ourselves.
            data = json.loads(text)
        except ValueError as e:
            raise ResponseParseFailed("Binance response parsing failed.") from e
        return parse_klines(data)

    async def fetch(self, symbol: str, timeframe: str, limit: int) -> MarketCandles:
        interval = normalize_binance_timeframe(timeframe)
        sym = normalize_binance_symbol(symbol)
        candles = await self.fetch_klines(sym, interval, limit)
        log.info("klines_fetched market=%s symbol=%s tf=%s bars=%d", self.market, sym, interval, len(candles))
        return MarketCandles(
            exchange=self.exchange_label,
            symbol=sym,
            timeframe=interval,
            candles=candles[-limit:],
        )
