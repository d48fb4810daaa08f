from __future__ import annotations


class MarketDataError(Exception):
    """Base for provider failures. The message is safe to show to users."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedTimeframe(MarketDataError):
    pass


class UpstreamRequestFailed(MarketDataError):
    pass


class ResponseParseFailed(MarketDataError):
    pass


class NoDataReturned(MarketDataError):
    pass
