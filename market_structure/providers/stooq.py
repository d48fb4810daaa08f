from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from ..errors import NoDataReturned, ResponseParseFailed, UnsupportedTimeframe, UpstreamRequestFailed
from ..models import Candle, MarketCandles
from ..resample import aggregate_candles
from .base import first_successful

log = logging.getLogger("stooq")

DAILY_CSV_URL = "https://stooq.com/q/d/l/"

# spot metal codes -> listed ETF proxies Stooq actually serves
METAL_PROXIES: Dict[str, str] = {
    "xauusd": "gld.us",
    "xagusd": "slv.us",
    "xptusd": "pplt.us",
    "xpdusd": "pall.us",
    "xcuusd": "cper.us",
}

_LETTERS_RE = re.compile(r"^[a-z]{1,5}$")


@dataclass(frozen=True)
class AggregationPlan:
    timeframe: str
    group_size: int


def aggregation_plan(timeframe: str) -> AggregationPlan:
    trimmed = (timeframe or "").strip()
    lower = trimmed.lower().replace(" ", "")
    if lower in ("1d", "d"):
        return AggregationPlan("1d", 1)
    if lower in ("1w", "w"):
        return AggregationPlan("1w", 5)
    if trimmed == "1M" or lower in ("1mo", "1mon"):
        return AggregationPlan("1M", 21)
    raise UnsupportedTimeframe(f"Unsupported timeframe for Stooq: {timeframe}")


def symbol_candidates(symbol: str) -> List[str]:
    cleaned = (symbol or "").strip().lower().replace(" ", "")
    candidates = [cleaned]
    if cleaned.startswith("^"):
        candidates.append(cleaned[1:])
    if _LETTERS_RE.match(cleaned):
        candidates.append(f"{cleaned}.us")
    proxy = METAL_PROXIES.get(cleaned)
    if proxy:
        candidates.append(proxy)

    out: List[str] = []
    for c in candidates:
        if c and c not in out:
            out.append(c)
    return out


def _parse_date_ms(value: str) -> Optional[int]:
    try:
        dt = datetime.strptime(value.strip(), "%Y-%m-%d")
    except ValueError:
        return None
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def parse_daily_csv(text: str) -> List[Candle]:
    """Parse Stooq's ``Date,Open,High,Low,Close,Volume`` CSV, oldest first."""
    lines = [ln.strip() for ln in (text or "").splitlines() if ln.strip()]
    if len(lines) < 2:
        raise ResponseParseFailed("Stooq response parsing failed.")

    by_time: Dict[int, Candle] = {}
    for line in lines[1:]:
        parts = line.split(",")
        if len(parts) < 6:
            continue
        ts = _parse_date_ms(parts[0])
        try:
            o, h, l, c, v = (float(x) for x in parts[1:6])
        except ValueError:
            continue
        if ts is None or not all(math.isfinite(x) for x in (o, h, l, c, v)):
            continue
        by_time[ts] = Candle(open_time_ms=ts, open=o, high=h, low=l, close=c, volume=v)

    if not by_time:
        raise NoDataReturned("No candles returned from Stooq.")
    return [by_time[ts] for ts in sorted(by_time)]


class StooqProvider:
    def __init__(self, *, rest_timeout_s: int = 20, csv_url: str = DAILY_CSV_URL):
        self.rest_timeout_s = rest_timeout_s
        self.csv_url = csv_url
        self.exchange_label = "Stooq"
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.rest_timeout_s))
        return self._session

    async def _get_text(self, url: str, params: Dict[str, Any]) -> str:
        sess = await self._get_session()
        try:
            async with sess.get(url, params=params) as resp:
                if resp.status < 200 or resp.status >= 300:
                    raise UpstreamRequestFailed(f"Stooq request failed ({resp.status}).")
                try:
                    return await resp.text()
                except UnicodeDecodeError as e:
                    raise ResponseParseFailed("Stooq response parsing failed.") from e
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise UpstreamRequestFailed(f"Stooq request failed: {str(e) or type(e).__name__}") from e

    async def fetch_daily(self, symbol: str, limit: int) -> List[Candle]:
        text = await self._get_text(self.csv_url, {"s": symbol, "i": "d"})
        return parse_daily_csv(text)[-limit:]

    async def fetch(self, symbol: str, timeframe: str, limit: int) -> MarketCandles:
        plan = aggregation_plan(timeframe)
        daily_needed = max(limit * plan.group_size, limit)

        async def _attempt(candidate: str) -> MarketCandles:
            daily = await self.fetch_daily(candidate, daily_needed)
            candles = aggregate_candles(daily, plan.group_size)
            if plan.group_size > 1 and len(daily) < plan.group_size:
                # too few days for one window: bars pass through as daily
                log.warning(
                    "partial_window symbol=%s tf=%s daily=%d group=%d",
                    candidate, plan.timeframe, len(daily), plan.group_size,
                )
            log.info(
                "daily_fetched symbol=%s tf=%s daily=%d bars=%d",
                candidate, plan.timeframe, len(daily), len(candles),
            )
            return MarketCandles(
                exchange=self.exchange_label,
                symbol=candidate.upper(),
                timeframe=plan.timeframe,
                candles=candles[-limit:],
            )

        return await first_successful(symbol_candidates(symbol), _attempt, source="Stooq")
