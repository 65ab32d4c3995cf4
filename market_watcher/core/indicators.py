"""
Simple Moving Average and Relative Strength Index over a gap-tolerant daily close series.

Both indicators walk N+1 trading days back from the anchor and, by default, divide the
accumulated totals by N rather than by the number of samples. average_over_samples=True
divides by the sample count instead.
"""

from datetime import date

from market_watcher.core.time_series import DailyTimeSeries

DEFAULT_LOOKBACK_DAYS = 14
DEFAULT_MAX_GAP_DAYS = 30
RSI_SATURATED = 100.0


def _validate_lookback(lookback_days: int) -> None:
    if lookback_days <= 0:
        raise ValueError(f"lookback_days must be positive, got {lookback_days}")


def simple_moving_average(
    series: DailyTimeSeries,
    anchor: date,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    max_gap_days: int = DEFAULT_MAX_GAP_DAYS,
    average_over_samples: bool = False,
) -> float:
    """
    Sums the anchor close and the N previous trading-day closes, rounded to 2dp.

    Raises:
        NoDataError: if the anchor has no close or the window cannot be filled.
    """
    _validate_lookback(lookback_days)

    close_sum = 0.0
    samples = 0
    current = anchor
    for i in range(lookback_days + 1):
        close_sum += series.close_on(current)
        samples += 1
        if i < lookback_days:
            current = series.previous_trading_day(current, max_gap_days)

    divisor = samples if average_over_samples else lookback_days
    return round(close_sum / divisor, 2)


def relative_strength_index(
    series: DailyTimeSeries,
    anchor: date,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    max_gap_days: int = DEFAULT_MAX_GAP_DAYS,
    average_over_samples: bool = False,
) -> float:
    """
    RSI over N+1 day-to-day moves ending at the anchor, rounded to 2dp.

    Returns 100.0 when there were no downward moves. When the window's last step lands on the
    first observation of the series there is nothing to compare it with and the step is dropped.

    Raises:
        NoDataError: if the anchor has no close or a previous trading day cannot be found.
    """
    _validate_lookback(lookback_days)

    upward_sum = 0.0
    downward_sum = 0.0
    comparisons = 0
    current = anchor
    earliest = series.earliest_date
    for i in range(lookback_days + 1):
        if i == lookback_days and current == earliest:
            break
        previous = series.previous_trading_day(current, max_gap_days)
        previous_close = series.close_on(previous)
        current_close = series.close_on(current)
        if previous_close <= current_close:
            upward_sum += current_close - previous_close
        else:
            downward_sum += previous_close - current_close
        comparisons += 1
        current = previous

    divisor = comparisons if average_over_samples else lookback_days
    average_gain = upward_sum / divisor
    average_loss = downward_sum / divisor
    if average_loss == 0:
        return RSI_SATURATED

    relative_strength = average_gain / average_loss
    return round(100 - (100 / (1 + relative_strength)), 2)
