from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from market_watcher.core.indicators import (
    DEFAULT_LOOKBACK_DAYS,
    DEFAULT_MAX_GAP_DAYS,
    relative_strength_index,
    simple_moving_average,
)
from market_watcher.core.time_series import DailyTimeSeries

# Characters that open an entity in Telegram's legacy Markdown.
_MARKDOWN_ENTITY_CHARS = "*_`["


class MarketUpdate(BaseModel):
    """
    A completed, immutable update for one symbol, ready for broadcast.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    name: Optional[str] = None
    as_of: date
    close: float
    lookback_days: int = Field(gt=0)
    sma: float
    rsi: float = Field(ge=0, le=100)
    message: str


def _strip_markdown(text: str) -> str:
    return "".join(ch for ch in text if ch not in _MARKDOWN_ENTITY_CHARS).strip()


def render_message(
    symbol: str,
    name: Optional[str],
    as_of: date,
    close: float,
    lookback_days: int,
    sma: float,
    rsi: float,
) -> str:
    display_name = _strip_markdown(name) if name else ""
    header = f"*{display_name} ({symbol})*" if display_name else f"*{symbol}*"
    lines = [
        header,
        f"Close on {as_of.isoformat()}: {close}",
        f"{lookback_days} period SMA: {sma}",
        f"{lookback_days} period RSI: {rsi}",
    ]
    return "\n".join(lines)


def build_market_update(
    series: DailyTimeSeries,
    target_date: date,
    name: Optional[str] = None,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    max_gap_days: int = DEFAULT_MAX_GAP_DAYS,
    average_over_samples: bool = False,
) -> MarketUpdate:
    """
    Resolves the anchor from target_date, computes SMA and RSI there and renders the message.

    Raises:
        NoDataError: if the anchor or the lookback window cannot be resolved.
    """
    anchor = series.resolve_anchor(target_date, max_gap_days)
    close = series.close_on(anchor)
    sma = simple_moving_average(series, anchor, lookback_days, max_gap_days, average_over_samples)
    rsi = relative_strength_index(series, anchor, lookback_days, max_gap_days, average_over_samples)

    return MarketUpdate(
        symbol=series.symbol,
        name=name,
        as_of=anchor,
        close=close,
        lookback_days=lookback_days,
        sma=sma,
        rsi=rsi,
        message=render_message(series.symbol, name, anchor, close, lookback_days, sma, rsi),
    )
