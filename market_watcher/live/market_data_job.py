import time
from datetime import date
from typing import Any, Callable, Optional, Protocol

from market_watcher.core.exceptions import MarketDataError
from market_watcher.core.market_update import MarketUpdate, build_market_update
from market_watcher.core.time_series import DailyTimeSeries
from market_watcher.metrics import metrics_registry
from market_watcher.signal.event_bus import MarketEventBus
from market_watcher.utils.config_loader import IndicatorConfig, MarketDataConfig
from market_watcher.utils.logger import LOGGER as logger
from market_watcher.utils.time_helper import today_utc


class MarketDataProvider(Protocol):
    async def fetch_daily_series(self, symbol: str) -> dict[str, Any]: ...

    async def search_symbol_name(self, symbol: str) -> Optional[str]: ...


class MarketDataJob:
    """
    One poll cycle: for each tracked symbol, in order, fetch the daily series,
    compute the indicators and publish the rendered update.
    A failure aborts only the symbol it happened on.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        event_bus: Optional[MarketEventBus],
        market_data_config: MarketDataConfig,
        indicator_config: IndicatorConfig,
        today: Callable[[], date] = today_utc,
    ) -> None:
        self.provider = provider
        self.event_bus = event_bus
        self.symbols = list(market_data_config.symbols)
        self.resolve_names = market_data_config.resolve_names
        self.indicator_config = indicator_config
        self._today = today
        self._names: dict[str, Optional[str]] = {}

    async def _resolve_name(self, symbol: str) -> Optional[str]:
        if not self.resolve_names:
            return None
        if symbol in self._names:
            return self._names[symbol]

        try:
            name = await self.provider.search_symbol_name(symbol)
        except MarketDataError as e:
            # Not cached, so the lookup is retried next cycle.
            logger.warning(f"Could not resolve display name for {symbol}: {e}")
            return None

        self._names[symbol] = name
        return name

    async def build_update(self, symbol: str) -> MarketUpdate:
        """
        Raises:
            MarketDataError: if the series cannot be fetched, parsed or evaluated.
        """
        name = await self._resolve_name(symbol)
        raw_series = await self.provider.fetch_daily_series(symbol)
        series = DailyTimeSeries.from_alpha_vantage(raw_series, symbol)
        logger.debug(f"Parsed {len(series)} daily closes for {series.symbol}.")

        return build_market_update(
            series,
            target_date=self._today(),
            name=name,
            lookback_days=self.indicator_config.lookback_days,
            max_gap_days=self.indicator_config.max_gap_days,
            average_over_samples=self.indicator_config.average_over_samples,
        )

    async def run(self) -> dict[str, str]:
        """
        Runs one poll cycle. Returns symbol -> outcome ("published" or the error type name).
        """
        if self.event_bus is None:
            raise RuntimeError("MarketDataJob.run requires an event bus")

        start_time = time.monotonic()
        outcomes: dict[str, str] = {}
        logger.info(f"Poll cycle started for {len(self.symbols)} symbols.")

        for symbol in self.symbols:
            try:
                update = await self.build_update(symbol)
                await self.event_bus.publish(update)
                outcomes[symbol] = "published"
                logger.info(f"{symbol}: close {update.close} on {update.as_of}, SMA {update.sma}, RSI {update.rsi}")
            except MarketDataError as e:
                outcomes[symbol] = type(e).__name__
                logger.error(f"Skipping {symbol} this cycle. {type(e).__name__}: {e}")
            except Exception as e:
                outcomes[symbol] = type(e).__name__
                logger.opt(exception=True).error(f"Unexpected error updating {symbol}: {e}")
            metrics_registry.record_symbol_update(symbol, outcomes[symbol])

        duration = time.monotonic() - start_time
        success = all(outcome == "published" for outcome in outcomes.values())
        metrics_registry.record_poll_cycle(success, duration)
        logger.info(f"Poll cycle finished in {duration:.2f}s: {outcomes}")
        return outcomes
