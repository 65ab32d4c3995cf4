"""
Data-error taxonomy for the polling pipeline.
Every subclass of MarketDataError is scoped to one symbol in one poll cycle: logged and skipped.
"""


class MarketDataError(Exception):
    """Base class for errors that abort a single symbol's update."""


class ProviderError(MarketDataError):
    """The market-data provider could not be reached or returned an error payload."""


class MalformedSeriesError(MarketDataError):
    """The provider response does not contain a usable daily close series."""


class NoDataError(MarketDataError):
    """No trading day could be found within the bounded backward search."""
