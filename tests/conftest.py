"""
Shared fixtures: synthetic daily series, provider payloads and a fully-defaulted AppConfig.
"""

from datetime import date, timedelta
from typing import Any, Optional

import pytest

from market_watcher.core.time_series import DailyTimeSeries
from market_watcher.utils.config_loader import AppConfig, SecretsConfig


def trading_days_ending(end: date, count: int) -> list[date]:
    """The last `count` weekdays up to and including `end`, oldest first."""
    days: list[date] = []
    current = end
    while len(days) < count:
        if current.weekday() < 5:
            days.append(current)
        current -= timedelta(days=1)
    return list(reversed(days))


def build_series(closes: list[float], end: date = date(2024, 3, 15), symbol: str = "TEST") -> DailyTimeSeries:
    days = trading_days_ending(end, len(closes))
    return DailyTimeSeries(symbol=symbol, closes=dict(zip(days, closes)))


def alpha_vantage_payload(series: DailyTimeSeries, symbol: Optional[str] = None) -> dict[str, Any]:
    return {
        "Meta Data": {"1. Information": "Daily Prices", "2. Symbol": symbol or series.symbol},
        "Time Series (Daily)": {
            day.isoformat(): {"1. open": f"{close:.4f}", "4. close": f"{close:.4f}", "5. volume": "1000"}
            for day, close in sorted(series.closes.items(), reverse=True)
        },
    }


@pytest.fixture
def make_series():
    return build_series


@pytest.fixture
def make_payload():
    return alpha_vantage_payload


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        secrets=SecretsConfig(alpha_vantage_api_key="test-key", telegram_access_token="123:test-token"),
        persistence={"path": str(tmp_path / "chat_ids")},
    )
