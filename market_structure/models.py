from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .pricing import format_price


@dataclass(frozen=True)
class Candle:
    open_time_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MarketCandles:
    exchange: str  # resolved label, e.g. "Binance Futures"
    symbol: str
    timeframe: str
    candles: List[Candle]

    def metadata(self) -> Dict[str, Any]:
        first = self.candles[0] if self.candles else None
        last = self.candles[-1] if self.candles else None
        return {
            "exchange": self.exchange,
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "candleCount": len(self.candles),
            "start": first.open_time_ms if first else None,
            "end": last.open_time_ms if last else None,
            "lastClose": last.close if last else None,
        }


@dataclass(frozen=True)
class KeyLevel:
    """A price and where it came from. Support/resistance is decided on read."""

    price: float
    note: Optional[str] = None

    @property
    def label(self) -> str:
        return format_price(self.price)

    def kind_at(self, current_price: float) -> str:
        return "support" if self.price <= current_price else "resistance"

    def to_dict(self, current_price: float) -> Dict[str, Any]:
        return {"price": self.label, "kind": self.kind_at(current_price), "note": self.note}


@dataclass(frozen=True)
class Scenario:
    name: str
    trigger: str
    path: str
    invalidation: Optional[str] = None
    probability: Optional[float] = None  # reserved, never scored

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "trigger": self.trigger,
            "path": self.path,
            "invalidation": self.invalidation,
            "probability": self.probability,
        }


@dataclass(frozen=True)
class TimeHorizonTargets:
    short_term: List[str] = field(default_factory=list)
    medium_term: List[str] = field(default_factory=list)
    long_term: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "shortTerm": list(self.short_term),
            "mediumTerm": list(self.medium_term),
            "longTerm": list(self.long_term),
        }


@dataclass(frozen=True)
class Bias:
    bullish: int
    bearish: int
    neutral: int

    def to_dict(self) -> Dict[str, int]:
        return {"bullish": self.bullish, "bearish": self.bearish, "neutral": self.neutral}


@dataclass(frozen=True)
class AnalysisPayload:
    symbol: str
    timeframe: str
    exchange: str
    summary: str
    market_regime: str
    regime_confidence: Optional[int]
    market_structure: str
    last_close: float
    support_resistance: List[KeyLevel]
    confluence: List[str]
    indicators: List[str]
    scenarios: List[Scenario]
    targets: TimeHorizonTargets
    bias: Bias
    risk_notes: List[str]
    disclaimer: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "exchange": self.exchange,
            "summary": self.summary,
            "marketRegime": self.market_regime,
            "regimeConfidence": self.regime_confidence,
            "marketStructure": self.market_structure,
            "supportResistance": [lvl.to_dict(self.last_close) for lvl in self.support_resistance],
            "confluence": list(self.confluence),
            "indicators": list(self.indicators),
            "scenarios": [s.to_dict() for s in self.scenarios],
            "timeHorizonTargets": self.targets.to_dict(),
            "bias": self.bias.to_dict(),
            "riskNotes": list(self.risk_notes),
            "disclaimer": self.disclaimer,
        }
