"""
In-memory daily close series for one symbol, built from the provider's raw response.
"""

import math
from datetime import date, timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from market_watcher.core.exceptions import MalformedSeriesError, NoDataError

TIME_SERIES_KEY = "Time Series (Daily)"
META_DATA_KEY = "Meta Data"
SYMBOL_KEY = "2. Symbol"
CLOSE_KEY = "4. close"


class DailyTimeSeries(BaseModel):
    """
    Trading date -> closing price. Keys exist only for trading days; weekends and holidays are gaps.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    closes: dict[date, float]

    @field_validator("closes")
    @classmethod
    def validate_closes(cls, closes: dict[date, float]) -> dict[date, float]:
        for day, close in closes.items():
            if not math.isfinite(close) or close < 0:
                raise ValueError(f"invalid close price {close} on {day}")
        return closes

    @classmethod
    def from_alpha_vantage(cls, payload: Any, symbol: Optional[str] = None) -> "DailyTimeSeries":
        """
        Builds a series from a TIME_SERIES_DAILY response.

        Raises:
            MalformedSeriesError: if the payload has no daily series or an entry cannot be parsed.
        """
        if not isinstance(payload, dict):
            raise MalformedSeriesError(f"Expected a JSON object, got {type(payload).__name__}")

        raw_series = payload.get(TIME_SERIES_KEY)
        if not isinstance(raw_series, dict):
            raise MalformedSeriesError(f"Response has no '{TIME_SERIES_KEY}' section")

        meta = payload.get(META_DATA_KEY)
        meta_symbol = meta.get(SYMBOL_KEY) if isinstance(meta, dict) else None
        resolved_symbol = meta_symbol or symbol
        if not resolved_symbol:
            raise MalformedSeriesError("Response does not identify its symbol")

        closes: dict[date, float] = {}
        for raw_date, values in raw_series.items():
            try:
                day = date.fromisoformat(raw_date)
                closes[day] = float(values[CLOSE_KEY])
            except (KeyError, TypeError, ValueError) as e:
                raise MalformedSeriesError(f"Unparseable entry for {raw_date!r} in {resolved_symbol}: {e}") from e

        try:
            return cls(symbol=str(resolved_symbol), closes=closes)
        except ValueError as e:
            raise MalformedSeriesError(f"Invalid series for {resolved_symbol}: {e}") from e

    def __contains__(self, day: object) -> bool:
        return day in self.closes

    def __len__(self) -> int:
        return len(self.closes)

    @property
    def earliest_date(self) -> Optional[date]:
        return min(self.closes) if self.closes else None

    def close_on(self, day: date) -> float:
        try:
            return self.closes[day]
        except KeyError:
            raise NoDataError(f"No close for {self.symbol} on {day.isoformat()}") from None

    def resolve_anchor(self, target: date, max_gap_days: int) -> date:
        """
        Walks backward from target (inclusive) to the most recent date with data.

        Raises:
            NoDataError: if nothing is found within max_gap_days days before target.
        """
        current = target
        for _ in range(max_gap_days + 1):
            if current in self.closes:
                return current
            current -= timedelta(days=1)
        raise NoDataError(
            f"No trading data for {self.symbol} within {max_gap_days} days before {target.isoformat()}"
        )

    def previous_trading_day(self, day: date, max_gap_days: int) -> date:
        """
        Returns the closest date strictly before day that has data.

        Raises:
            NoDataError: if no such date exists within max_gap_days days.
        """
        current = day
        for _ in range(max_gap_days):
            current -= timedelta(days=1)
            if current in self.closes:
                return current
        raise NoDataError(
            f"No trading day for {self.symbol} within {max_gap_days} days before {day.isoformat()}"
        )
