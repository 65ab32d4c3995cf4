import time
from typing import Any, Optional

import httpx

from market_watcher.core.exceptions import ProviderError
from market_watcher.metrics import metrics_registry
from market_watcher.utils.config_loader import MarketDataConfig
from market_watcher.utils.logger import LOGGER as logger
from market_watcher.utils.rate_limiter import RateLimiter

# Keys Alpha Vantage uses to report errors and throttling inside a 200 response.
PROVIDER_ERROR_KEYS = ("Error Message", "Note", "Information")


class AlphaVantageClient:
    """
    Async client for the Alpha Vantage query API.
    Every request is rate limited, bounded by a timeout and mapped to ProviderError on failure.
    """

    def __init__(
        self,
        config: MarketDataConfig,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key or not isinstance(api_key, str):
            logger.critical("CRITICAL: AlphaVantageClient initialized with an invalid or empty API key.")
            raise ValueError("api_key must be a non-empty string.")

        self.config = config
        self._api_key = api_key
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._owns_client = http_client is None
        self.rate_limiter = RateLimiter("alpha_vantage", config.rate_limit)
        logger.info(f"AlphaVantageClient instantiated for {config.base_url}.")

    async def _query(self, function: str, params: dict[str, str]) -> dict[str, Any]:
        request_params = {"function": function, **params, "apikey": self._api_key}
        start_time = time.monotonic()
        success = False
        try:
            async with self.rate_limiter:
                response = await self._client.get(
                    self.config.base_url, params=request_params, timeout=self.config.timeout_seconds
                )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise ProviderError(f"{function} timed out after {self.config.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"{function} failed with HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ProviderError(f"{function} request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise ProviderError(f"{function} returned a non-JSON body") from e
        else:
            if not isinstance(payload, dict):
                raise ProviderError(f"{function} returned {type(payload).__name__}, expected an object")
            for key in PROVIDER_ERROR_KEYS:
                if key in payload:
                    raise ProviderError(f"{function} rejected by provider: {payload[key]}")
            success = True
            return payload
        finally:
            duration = time.monotonic() - start_time
            metrics_registry.record_provider_request(function, success, duration)
            logger.debug(f"{function} {params} completed in {duration:.2f}s (success={success})")

    async def fetch_daily_series(self, symbol: str) -> dict[str, Any]:
        """
        Fetches the raw TIME_SERIES_DAILY response for symbol.

        Raises:
            ProviderError: on timeout, transport or HTTP failure, or a provider error payload.
        """
        logger.info(f"Fetching daily series for {symbol}.")
        return await self._query("TIME_SERIES_DAILY", {"symbol": symbol, "outputsize": self.config.output_size})

    async def search_symbol_name(self, symbol: str) -> Optional[str]:
        """
        Looks up the instrument's display name. Prefers an exact symbol match, else the best match.

        Raises:
            ProviderError: if the search request itself fails.
        """
        payload = await self._query("SYMBOL_SEARCH", {"keywords": symbol})
        matches = payload.get("bestMatches") or []
        if not isinstance(matches, list) or not matches:
            logger.warning(f"No symbol search matches for {symbol}.")
            return None

        best = next(
            (m for m in matches if isinstance(m, dict) and str(m.get("1. symbol", "")).upper() == symbol.upper()),
            matches[0],
        )
        name = best.get("2. name") if isinstance(best, dict) else None
        if not name or not str(name).strip():
            return None
        return str(name).strip()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
            logger.info("AlphaVantageClient HTTP client closed.")
