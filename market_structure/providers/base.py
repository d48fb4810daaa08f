from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Protocol, Sequence, TypeVar

from ..errors import MarketDataError
from ..models import MarketCandles

log = logging.getLogger("providers")

T = TypeVar("T")


class CandleProvider(Protocol):
    async def fetch(self, symbol: str, timeframe: str, limit: int) -> MarketCandles:
        ...

    async def close(self) -> None:
        ...


async def first_successful(
    candidates: Sequence[str],
    attempt: Callable[[str], Awaitable[T]],
    *,
    source: str,
) -> T:
    """Try ``attempt`` on each candidate in order; return the first success.

    Attempts are sequential. If every candidate fails the last error is
    re-raised unchanged.
    """
    last_err: Optional[MarketDataError] = None
    for candidate in candidates:
        try:
            return await attempt(candidate)
        except MarketDataError as e:
            last_err = e
            log.warning("candidate_failed source=%s symbol=%s err=%s", source, candidate, e)
    if last_err is not None:
        raise last_err
    raise MarketDataError(f"{source} fetch failed.")
