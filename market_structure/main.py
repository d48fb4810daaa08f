from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import load_config
from .formatters import format_analysis
from .service import AnalysisRequest, MarketAnalyzer


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Market Structure Analyzer - levels, regime and scenarios from OHLCV")
    p.add_argument("--config", default=None, help="Path to YAML config (optional)")
    p.add_argument("--exchange", default="", help="Provider hint, e.g. binance, binance-futures, stooq")
    p.add_argument("--symbol", action="append", default=[], help="Symbol to analyze (repeatable)")
    p.add_argument("--timeframe", default="", help="Timeframe, e.g. 15m, 1h, 240, 1d, 1w")
    p.add_argument("--limit", type=int, default=None, help="Number of bars to fetch")
    p.add_argument("--format", choices=("json", "text", "html"), default="json")
    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)

    symbols = args.symbol or [cfg.request.default_symbol]
    requests = [AnalysisRequest(args.exchange, s, args.timeframe, args.limit) for s in symbols]
    analyzer = MarketAnalyzer(cfg)

    async def _run():
        try:
            return await analyzer.analyze_many(requests)
        finally:
            # Close shared REST sessions cleanly.
            await analyzer.close()

    try:
        results = asyncio.run(_run())
    except KeyboardInterrupt:
        return 130

    for envelope in results:
        if args.format == "json":
            print(json.dumps(envelope, ensure_ascii=False, indent=2))
        else:
            print(format_analysis(envelope, parse_mode=args.format.upper()))
            print()

    return 0 if all(r.get("ok") for r in results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
