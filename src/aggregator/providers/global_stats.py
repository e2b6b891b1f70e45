"""CoinGecko /global client for aggregate market statistics."""

from aggregator.config import RetrySettings
from aggregator.data.cache_store import GLOBAL_CACHE, CacheStore
from aggregator.exceptions import NotConnectedError
from aggregator.logging import get_logger
from aggregator.models import GlobalMarketSnapshot, global_from_api
from aggregator.providers.http import RETRYABLE_ERRORS, ProviderHttp, decode_json, fetch_with_retry
from aggregator.providers.reachability import ReachabilityMonitor

logger = get_logger(__name__)


class GlobalStatsClient:
    """Fetches total market cap, volume and dominance.

    Same offline/cache/retry policy as the market listings. A malformed
    payload is surfaced immediately and never overwrites the cache.
    """

    def __init__(
        self,
        http: ProviderHttp,
        cache: CacheStore,
        reachability: ReachabilityMonitor,
        retry: RetrySettings,
    ) -> None:
        self._http = http
        self._cache = cache
        self._reachability = reachability
        self._retry = retry

    async def fetch_global_stats(self) -> GlobalMarketSnapshot:
        if not self._reachability.is_online:
            cached = self._cache.load_global(GLOBAL_CACHE)
            if cached is not None:
                logger.info("serving_cached_global", reason="offline")
                return cached
            raise NotConnectedError()

        try:
            snapshot = await fetch_with_retry(
                self._fetch_once,
                max_attempts=self._retry.max_attempts,
                base_delay=self._retry.base_delay,
                operation="fetch_global_stats",
            )
        except RETRYABLE_ERRORS:
            cached = self._cache.load_global(GLOBAL_CACHE)
            if cached is None:
                raise
            logger.info("serving_cached_global", reason="retries_exhausted")
            return cached

        logger.info(
            "global_stats_fetched",
            market_cap_usd=str(snapshot.total_market_cap.get("usd")),
            btc_dominance=str(snapshot.market_cap_percentage.get("btc")),
            active=snapshot.active_cryptocurrencies,
        )
        return snapshot

    async def _fetch_once(self) -> GlobalMarketSnapshot:
        raw = await self._http.get("/global")
        snapshot = global_from_api(decode_json(raw))
        self._cache.save(GLOBAL_CACHE, raw)
        return snapshot
