"""CoinGecko watchlist client: market listings restricted to an id set."""

from aggregator.data.cache_store import WATCHLIST_CACHE
from aggregator.exceptions import NotConnectedError
from aggregator.logging import get_logger
from aggregator.models import Coin
from aggregator.providers.coingecko import CoinGeckoBase
from aggregator.providers.http import RETRYABLE_ERRORS, fetch_with_retry

logger = get_logger(__name__)


class WatchlistDataClient(CoinGeckoBase):
    """Fetches the user's favorited coins with sparkline and 1h/24h/7d change.

    Shares retry, backoff and cache fallback with MarketDataClient, but every
    request and every fallback is filtered to the explicit id set.
    """

    async def fetch_watchlist_markets(self, ids: list[str]) -> list[Coin]:
        """Market data for ids. An empty id set returns [] without a request.

        Raises:
            NotConnectedError: Offline with nothing cached.
            RateLimitedError | ConnectivityError: Retries exhausted, nothing cached.
            BadServerResponseError: Non-2xx, non-429 response.
            DecodeError: Malformed payload.
        """
        if not ids:
            return []

        mapped = [self.resolve_id(i) for i in ids]

        if not self._reachability.is_online:
            cached = self._cached_for_ids(mapped)
            if cached is not None:
                logger.info("serving_cached_watchlist", reason="offline", count=len(cached))
                return cached
            raise NotConnectedError()

        params = self._markets_params(sparkline=True, ids=mapped)
        try:
            coins = await fetch_with_retry(
                lambda: self._fetch_markets(params, WATCHLIST_CACHE),
                max_attempts=self._retry.max_attempts,
                base_delay=self._retry.base_delay,
                operation="fetch_watchlist_markets",
            )
        except RETRYABLE_ERRORS:
            cached = self._cached_for_ids(mapped)
            if cached is None:
                raise
            logger.info("serving_cached_watchlist", reason="retries_exhausted", count=len(cached))
            return cached

        logger.debug("watchlist_fetched", requested=len(mapped), count=len(coins))
        return coins
