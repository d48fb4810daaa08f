from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .analysis import analyze_candles
from .config import Config
from .errors import MarketDataError
from .providers.router import ProviderRouter, clamp_limit

log = logging.getLogger("service")


@dataclass(frozen=True)
class AnalysisRequest:
    exchange: str = ""
    symbol: str = ""
    timeframe: str = ""
    limit: Optional[int] = None


class MarketAnalyzer:
    """Request boundary: fetch candles, run the analysis, wrap the result in an envelope."""

    def __init__(self, cfg: Config, router: Optional[ProviderRouter] = None):
        self.cfg = cfg
        self.router = router or ProviderRouter.from_config(cfg.provider)

    async def close(self) -> None:
        await self.router.close()

    def _resolve(self, req: AnalysisRequest) -> AnalysisRequest:
        rc = self.cfg.request
        try:
            limit = int(req.limit) if req.limit is not None else rc.default_limit
        except (TypeError, ValueError):
            limit = rc.default_limit
        return AnalysisRequest(
            exchange=(req.exchange or "").strip() or rc.default_exchange,
            symbol=(req.symbol or "").strip() or rc.default_symbol,
            timeframe=(req.timeframe or "").strip() or rc.default_timeframe,
            limit=clamp_limit(limit, rc.min_limit, rc.max_limit),
        )

    async def analyze(
        self,
        exchange: str = "",
        symbol: str = "",
        timeframe: str = "",
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        req = self._resolve(AnalysisRequest(exchange, symbol, timeframe, limit))
        try:
            market = await self.router.fetch(req.exchange, req.symbol, req.timeframe, req.limit)
            payload = analyze_candles(
                market.exchange,
                market.symbol,
                market.timeframe,
                market.candles,
                self.cfg.analysis,
            )
        except MarketDataError as e:
            log.warning(
                "analysis_failed exchange=%s symbol=%s tf=%s err=%s",
                req.exchange, req.symbol, req.timeframe, e.message,
            )
            return {"ok": False, "error": e.message}
        except Exception as e:
            log.exception("analysis_crashed exchange=%s symbol=%s tf=%s", req.exchange, req.symbol, req.timeframe)
            return {"ok": False, "error": str(e) or "Unknown error"}

        log.info(
            "analysis_done exchange=%s symbol=%s tf=%s bars=%d regime=%r",
            market.exchange, market.symbol, market.timeframe, len(market.candles), payload.market_regime,
        )
        return {"ok": True, "market": market.metadata(), "analysis": payload.to_dict()}

    async def analyze_many(self, requests: List[AnalysisRequest]) -> List[Dict[str, Any]]:
        """Independent requests run concurrently; results keep the input order."""
        sem = asyncio.Semaphore(max(1, int(self.cfg.provider.concurrency)))

        async def _one(req: AnalysisRequest) -> Dict[str, Any]:
            async with sem:
                return await self.analyze(req.exchange, req.symbol, req.timeframe, req.limit)

        return list(await asyncio.gather(*[_one(r) for r in requests]))
