import asyncio
import json
import logging
from datetime import date, timedelta

import pytest

from market_structure.errors import (
    NoDataReturned,
    ResponseParseFailed,
    UnsupportedTimeframe,
    UpstreamRequestFailed,
)
from market_structure.models import Candle, MarketCandles
from market_structure.providers.base import first_successful
from market_structure.providers.binance import (
    BinanceProvider,
    is_futures_hint,
    normalize_binance_symbol,
    normalize_binance_timeframe,
    parse_klines,
)
from market_structure.providers.router import ProviderRouter, clamp_limit
from market_structure.providers.stooq import (
    StooqProvider,
    aggregation_plan,
    parse_daily_csv,
    symbol_candidates,
)
from market_structure.resample import aggregate_candles


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(open_time_ms=idx * 86_400_000, open=o, high=h, low=l, close=c, volume=v)


def _kline(idx: int, close: float):
    t = idx * 3_600_000
    return [t, str(close), str(close + 1), str(close - 1), str(close), "12.5", t + 3_599_999, "0", 10, "0", "0", "0"]


def _csv(n: int, start: date = date(2024, 1, 1)) -> str:
    rows = ["Date,Open,High,Low,Close,Volume"]
    for i in range(n):
        d = start + timedelta(days=i)
        rows.append(f"{d.isoformat()},{100 + i},{101 + i},{99 + i},{100.5 + i},{1000 + i}")
    return "\n".join(rows)


class FakeBinance(BinanceProvider):
    def __init__(self, body: str, **kwargs):
        super().__init__(**kwargs)
        self.body = body
        self.calls = []

    async def _get_text(self, url, params):
        self.calls.append((url, dict(params)))
        return self.body


class FakeStooq(StooqProvider):
    """Serves canned CSV per symbol; a symbol mapped to an exception raises it."""

    def __init__(self, responses):
        super().__init__()
        self.responses = responses
        self.calls = []

    async def _get_text(self, url, params):
        self.calls.append(params["s"])
        resp = self.responses.get(params["s"], "No data")
        if isinstance(resp, Exception):
            raise resp
        return resp


# --- binance ---------------------------------------------------------------


def test_binance_timeframe_normalization():
    assert normalize_binance_timeframe("1h") == "1h"
    assert normalize_binance_timeframe("60") == "1h"
    assert normalize_binance_timeframe("240") == "4h"
    assert normalize_binance_timeframe("180") == "3h"
    assert normalize_binance_timeframe("15") == "15m"
    assert normalize_binance_timeframe("60m") == "1h"
    assert normalize_binance_timeframe("15m") == "15m"
    assert normalize_binance_timeframe("1 H") == "1h"
    assert normalize_binance_timeframe("45") == "45"


def test_binance_symbol_normalization():
    assert normalize_binance_symbol("btc/usdt") == "BTCUSDT"
    assert normalize_binance_symbol(" eth-usdt ") == "ETHUSDT"
    assert normalize_binance_symbol("sol usdt") == "SOLUSDT"


def test_futures_hint():
    assert is_futures_hint("binance-futures")
    assert is_futures_hint("Binance PERP")
    assert is_futures_hint("fapi")
    assert not is_futures_hint("binance")


def test_parse_klines_skips_bad_rows():
    raw = [
        _kline(0, 100.0),
        [1, 2, 3],
        [3_600_000, "abc", "1", "1", "1", "1"],
        [7_200_000, "NaN", "1", "1", "1", "1"],
        _kline(3, 103.0),
    ]
    candles = parse_klines(raw)
    assert [c.close for c in candles] == [100.0, 103.0]
    assert candles[1].open_time_ms == 3 * 3_600_000
    assert candles[0].volume == 12.5


def test_parse_klines_errors():
    with pytest.raises(ResponseParseFailed):
        parse_klines({"code": -1121, "msg": "Invalid symbol."})
    with pytest.raises(NoDataReturned):
        parse_klines([])


def test_binance_fetch_normalizes_and_trims():
    body = json.dumps([_kline(i, 100.0 + i) for i in range(15)])
    p = FakeBinance(body, market="spot")
    market = asyncio.run(p.fetch("btc/usdt", "60", 10))

    assert market.exchange == "Binance"
    assert market.symbol == "BTCUSDT"
    assert market.timeframe == "1h"
    assert len(market.candles) == 10
    assert market.candles[-1].close == 114.0
    url, params = p.calls[0]
    assert url == "https://api.binance.com/api/v3/klines"
    assert params == {"symbol": "BTCUSDT", "interval": "1h", "limit": 10}


def test_binance_futures_label_and_url():
    p = FakeBinance(json.dumps([_kline(0, 1.0)]), market="futures")
    market = asyncio.run(p.fetch("ETHUSDT", "4h", 10))
    assert market.exchange == "Binance Futures"
    assert p.calls[0][0] == "https://fapi.binance.com/fapi/v1/klines"


def test_binance_non_json_body():
    p = FakeBinance("<html>oops</html>")
    with pytest.raises(ResponseParseFailed):
        asyncio.run(p.fetch("BTCUSDT", "1h", 10))


# --- stooq -----------------------------------------------------------------


def test_aggregation_plan():
    assert aggregation_plan("1d") == aggregation_plan("D")
    assert aggregation_plan("1d").group_size == 1
    assert aggregation_plan("W").timeframe == "1w"
    assert aggregation_plan("1w").group_size == 5
    assert aggregation_plan("1M").group_size == 21
    assert aggregation_plan("1mo").timeframe == "1M"
    with pytest.raises(UnsupportedTimeframe):
        aggregation_plan("4h")


def test_unsupported_timeframe_makes_no_request():
    p = FakeStooq({"spy": _csv(30)})
    with pytest.raises(UnsupportedTimeframe):
        asyncio.run(p.fetch("spy", "4h", 50))
    assert p.calls == []


def test_symbol_candidates():
    assert symbol_candidates("SPY") == ["spy", "spy.us"]
    assert symbol_candidates("^SPX") == ["^spx", "spx"]
    assert symbol_candidates("XAUUSD") == ["xauusd", "gld.us"]
    assert symbol_candidates("spy.us") == ["spy.us"]


def test_parse_daily_csv_sorts_and_dedupes():
    text = "\n".join([
        "Date,Open,High,Low,Close,Volume",
        "2024-01-03,3,3,3,3,3",
        "2024-01-01,1,1,1,1,1",
        "not-a-date,1,1,1,1,1",
        "2024-01-02,2,2,2,x,2",
        "2024-01-03,4,4,4,4,4",
    ])
    candles = parse_daily_csv(text)
    assert [c.close for c in candles] == [1.0, 4.0]
    assert candles[0].open_time_ms < candles[1].open_time_ms


def test_parse_daily_csv_errors():
    with pytest.raises(ResponseParseFailed):
        parse_daily_csv("No data")
    with pytest.raises(NoDataReturned):
        parse_daily_csv("Date,Open,High,Low,Close,Volume\nbad,row")


def test_stooq_falls_back_to_next_candidate():
    p = FakeStooq({"spy.us": _csv(30)})
    market = asyncio.run(p.fetch("SPY", "1d", 10))
    assert p.calls == ["spy", "spy.us"]
    assert market.symbol == "SPY.US"
    assert market.exchange == "Stooq"
    assert market.timeframe == "1d"
    assert len(market.candles) == 10
    assert market.candles[-1].close == 129.5


def test_stooq_reports_last_error_when_all_fail():
    p = FakeStooq({"spy": UpstreamRequestFailed("Stooq request failed (503).")})
    with pytest.raises(ResponseParseFailed):
        asyncio.run(p.fetch("SPY", "1d", 10))
    assert p.calls == ["spy", "spy.us"]


def test_stooq_weekly_aggregates_daily_bars():
    p = FakeStooq({"spy.us": _csv(60)})
    market = asyncio.run(p.fetch("spy.us", "1w", 10))
    assert market.timeframe == "1w"
    assert len(market.candles) == 10
    # last 50 daily bars (i = 10..59) in windows of 5
    first = market.candles[0]
    assert first.open == 110.0
    assert first.high == 115.0
    assert first.low == 109.0
    assert first.close == 114.5
    assert first.volume == sum(1000 + i for i in range(10, 15))


# --- resample / fallback helper ----------------------------------------------


def test_aggregate_candles_windows():
    daily = [_c(i, 10 + i, 11 + i, 9 + i, 10.5 + i, 1) for i in range(10)]
    weekly = aggregate_candles(daily, 5)
    assert len(weekly) == 2
    assert weekly[1].open_time_ms == daily[5].open_time_ms
    assert (weekly[1].open, weekly[1].high, weekly[1].low, weekly[1].close) == (15, 20, 14, 19.5)
    assert weekly[1].volume == 5


def test_aggregate_candles_drops_trailing_partial():
    daily = [_c(i, 10, 11, 9, 10) for i in range(12)]
    assert len(aggregate_candles(daily, 5)) == 2
    assert aggregate_candles(daily[:3], 5) == daily[:3]
    assert aggregate_candles(daily, 1) == daily


def test_first_successful_stops_at_first_success():
    tried = []

    async def attempt(sym):
        tried.append(sym)
        if sym == "a":
            raise NoDataReturned("none")
        return sym.upper()

    assert asyncio.run(first_successful(["a", "b", "c"], attempt, source="test")) == "B"
    assert tried == ["a", "b"]


# --- router -----------------------------------------------------------------


class RecordingProvider:
    def __init__(self, name):
        self.name = name
        self.calls = []
        self.closed = False

    async def fetch(self, symbol, timeframe, limit):
        self.calls.append((symbol, timeframe, limit))
        return MarketCandles(exchange=self.name, symbol=symbol, timeframe=timeframe, candles=[])

    async def close(self):
        self.closed = True


def _router():
    return ProviderRouter(
        spot=RecordingProvider("spot"),
        futures=RecordingProvider("futures"),
        stooq=RecordingProvider("stooq"),
    )


def test_router_selects_provider_from_hint():
    r = _router()
    assert r.select("stooq") is r.stooq
    assert r.select("Stooq daily") is r.stooq
    assert r.select("binance-futures") is r.futures
    assert r.select("binance perp") is r.futures
    assert r.select("binance") is r.spot
    assert r.select("") is r.spot


def test_router_clamps_limit():
    assert clamp_limit(5) == 10
    assert clamp_limit(5000) == 1000
    assert clamp_limit(220) == 220

    r = _router()
    asyncio.run(r.fetch("binance", "BTCUSDT", "1h", 5000))
    assert r.spot.calls == [("BTCUSDT", "1h", 1000)]


def test_router_close_closes_all():
    r = _router()
    asyncio.run(r.close())
    assert r.spot.closed and r.futures.closed and r.stooq.closed


class _FakeResponse:
    def __init__(self, body: bytes, status: int = 200):
        self.body = body
        self.status = status

    async def text(self):
        return self.body.decode("utf-8")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _FakeSession:
    """Stands in for aiohttp.ClientSession; bodies are keyed by the ``s`` query param."""

    def __init__(self, bodies):
        self.bodies = bodies
        self.requested = []
        self.closed = False

    def get(self, url, params=None):
        key = (params or {}).get("s", "")
        self.requested.append(key)
        return _FakeResponse(self.bodies.get(key, b"No data"))


class SessionStooq(StooqProvider):
    def __init__(self, session):
        super().__init__()
        self.fake_session = session

    async def _get_session(self):
        return self.fake_session


class SessionBinance(BinanceProvider):
    def __init__(self, session, **kwargs):
        super().__init__(**kwargs)
        self.fake_session = session

    async def _get_session(self):
        return self.fake_session


def test_stooq_undecodable_body_moves_to_next_candidate():
    sess = _FakeSession({"spy": b"Date,Open\n\xff\xfe\xfa", "spy.us": _csv(30).encode("utf-8")})
    market = asyncio.run(SessionStooq(sess).fetch("spy", "1d", 10))
    assert sess.requested == ["spy", "spy.us"]
    assert market.symbol == "SPY.US"
    assert len(market.candles) == 10


def test_stooq_undecodable_body_is_a_parse_failure():
    sess = _FakeSession({"spy.us": b"\xff\xfe"})
    with pytest.raises(ResponseParseFailed):
        asyncio.run(SessionStooq(sess).fetch("spy.us", "1d", 10))


def test_binance_undecodable_body_is_a_parse_failure():
    sess = _FakeSession({"": b"\xff\xfe\xfa"})
    with pytest.raises(ResponseParseFailed):
        asyncio.run(SessionBinance(sess, market="spot").fetch("BTCUSDT", "1h", 10))


def test_stooq_warns_when_too_few_days_for_a_window(caplog):
    p = FakeStooq({"spy.us": _csv(3)})
    with caplog.at_level(logging.WARNING, logger="stooq"):
        market = asyncio.run(p.fetch("spy.us", "1w", 10))
    assert market.timeframe == "1w"
    assert len(market.candles) == 3
    assert any("partial_window" in r.getMessage() for r in caplog.records)


def test_stooq_full_window_does_not_warn(caplog):
    p = FakeStooq({"spy.us": _csv(10)})
    with caplog.at_level(logging.WARNING, logger="stooq"):
        asyncio.run(p.fetch("spy.us", "1w", 10))
    assert not any("partial_window" in r.getMessage() for r in caplog.records)
