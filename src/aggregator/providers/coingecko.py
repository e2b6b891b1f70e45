"""CoinGecko market data client.

Fetches the top-N market listing, id-filtered listings and spot prices.
Successful listings are written to the cache verbatim; when the host is
offline or retries run out, the last cached listing is served instead.

Rate limits (429) and connectivity failures are retried with exponential
backoff. Any other non-2xx status and any malformed payload fail at once.
"""

from decimal import Decimal, InvalidOperation

from aggregator.config import ProviderSettings, RetrySettings
from aggregator.data.cache_store import COINS_CACHE, LOOKUP_CACHE, WATCHLIST_CACHE, CacheStore
from aggregator.exceptions import (
    AggregatorError,
    DecodeError,
    NotConnectedError,
)
from aggregator.logging import get_logger
from aggregator.models import Coin, coins_from_api
from aggregator.providers.http import RETRYABLE_ERRORS, ProviderHttp, decode_json, fetch_with_retry
from aggregator.providers.reachability import ReachabilityMonitor

logger = get_logger(__name__)

# Ad-hoc lookups write only LOOKUP_CACHE but may fall back to any coin entry
_LOOKUP_FALLBACK = (LOOKUP_CACHE, WATCHLIST_CACHE, COINS_CACHE)

# Static mapping from ticker symbols to CoinGecko coin IDs
SYMBOL_TO_COINGECKO: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "SOL": "solana",
    "XRP": "ripple",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "BNB": "binancecoin",
    "USDT": "tether",
    "USDC": "usd-coin",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "LTC": "litecoin",
    "SHIB": "shiba-inu",
    "TRX": "tron",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "NEAR": "near",
    "PEPE": "pepe",
}


def coingecko_id(symbol: str) -> str:
    """Map a ticker symbol to its CoinGecko id; unknown symbols pass through lowercased."""
    return SYMBOL_TO_COINGECKO.get(symbol.upper(), symbol.lower())


def filter_by_ids(coins: list[Coin], ids: list[str] | set[str]) -> list[Coin]:
    wanted = set(ids)
    return [c for c in coins if c.id in wanted]


class CoinGeckoBase:
    """Shared plumbing for clients of the /coins/markets family of endpoints."""

    def __init__(
        self,
        http: ProviderHttp,
        cache: CacheStore,
        reachability: ReachabilityMonitor,
        provider: ProviderSettings,
        retry: RetrySettings,
    ) -> None:
        self._http = http
        self._cache = cache
        self._reachability = reachability
        self._provider = provider
        self._retry = retry
        self._learned_ids: dict[str, str] = {}

    def resolve_id(self, symbol: str) -> str:
        """Map a symbol to a CoinGecko id, preferring ids seen in the latest listing."""
        return self._learned_ids.get(symbol.upper()) or coingecko_id(symbol)

    def learn_ids(self, coins: list[Coin]) -> None:
        """Remember symbol -> id from a listing. Higher-ranked coins win on clashes."""
        for coin in reversed(coins):
            self._learned_ids[coin.symbol.upper()] = coin.id

    def _markets_params(
        self,
        sparkline: bool,
        price_change: str = "1h,24h,7d",
        ids: list[str] | None = None,
    ) -> dict[str, str | int]:
        params: dict[str, str | int] = {
            "vs_currency": self._provider.vs_currency,
            "order": "market_cap_desc",
            "sparkline": str(sparkline).lower(),
            "price_change_percentage": price_change,
        }
        if ids is None:
            params["per_page"] = self._provider.per_page
            params["page"] = 1
        else:
            params["ids"] = ",".join(ids)
        return params

    async def _fetch_markets(self, params: dict, cache_name: str) -> list[Coin]:
        """One attempt: GET, decode, then overwrite the cache entry."""
        raw = await self._http.get("/coins/markets", params)
        coins = coins_from_api(decode_json(raw))
        self._cache.save(cache_name, raw)
        return coins

    def _cached_for_ids(
        self, ids: list[str], entries: tuple[str, ...] = (WATCHLIST_CACHE, COINS_CACHE)
    ) -> list[Coin] | None:
        """Cached coins for ids, taken from entries in order; the first entry holding a coin wins."""
        found: dict[str, Coin] = {}
        hit = False
        for name in entries:
            cached = self._cache.load_coins(name)
            if cached is None:
                continue
            hit = True
            for coin in filter_by_ids(cached, ids):
                found.setdefault(coin.id, coin)
        if not hit:
            return None
        return list(found.values())


class MarketDataClient(CoinGeckoBase):
    """Market listings and spot prices from CoinGecko.

    Usage:
        client = MarketDataClient(http, cache, reachability, provider, retry)
        coins = await client.fetch_coin_markets()
    """

    async def fetch_coin_markets(self) -> list[Coin]:
        """Top-N coins by market cap with sparkline and 1h/24h/7d change.

        Raises:
            NotConnectedError: Offline with no cached listing.
            RateLimitedError | ConnectivityError: Retries exhausted, no cache.
            BadServerResponseError: Non-2xx, non-429 response.
            DecodeError: Malformed payload.
        """
        if not self._reachability.is_online:
            cached = self._cache.load_coins(COINS_CACHE)
            if cached is not None:
                logger.info("serving_cached_coins", reason="offline", count=len(cached))
                return cached
            raise NotConnectedError()

        params = self._markets_params(sparkline=True)
        try:
            coins = await fetch_with_retry(
                lambda: self._fetch_markets(params, COINS_CACHE),
                max_attempts=self._retry.max_attempts,
                base_delay=self._retry.base_delay,
                operation="fetch_coin_markets",
            )
        except RETRYABLE_ERRORS:
            cached = self._cache.load_coins(COINS_CACHE)
            if cached is None:
                raise
            logger.info("serving_cached_coins", reason="retries_exhausted", count=len(cached))
            return cached

        self.learn_ids(coins)
        logger.info("coin_markets_fetched", count=len(coins))
        return coins

    async def fetch_coins(self, ids: list[str]) -> list[Coin]:
        """Coins for the given ids (symbols are mapped to CoinGecko ids).

        Never raises for provider failures: falls back to cached entries for
        the requested ids, or an empty list.
        """
        mapped = [self.resolve_id(i) for i in ids]

        if not self._reachability.is_online:
            return self._cached_for_ids(mapped, _LOOKUP_FALLBACK) or []
        if not mapped:
            return []

        params = self._markets_params(sparkline=False, price_change="24h", ids=mapped)
        try:
            coins = await fetch_with_retry(
                lambda: self._fetch_markets(params, LOOKUP_CACHE),
                max_attempts=self._retry.batch_max_attempts,
                base_delay=self._retry.batch_base_delay,
                operation="fetch_coins",
            )
        except AggregatorError as e:
            logger.warning("fetch_coins_failed", ids=mapped, error=str(e))
            return self._cached_for_ids(mapped, _LOOKUP_FALLBACK) or []

        logger.debug("coins_fetched", requested=len(mapped), count=len(coins))
        return coins

    async def fetch_spot_price(self, symbol: str) -> Decimal:
        """Current USD price for one symbol via /simple/price. Not retried."""
        prices = await self.fetch_spot_prices([symbol])
        price = prices.get(symbol.lower())
        if price is None:
            raise DecodeError(f"simple/price: no price for {symbol}")
        return price

    async def fetch_spot_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Current USD prices for a batch of symbols in one round trip.

        Returns a mapping keyed by lowercase symbol; symbols the provider
        does not know are omitted.
        """
        if not self._reachability.is_online:
            raise NotConnectedError()
        if not symbols:
            return {}

        id_to_symbols: dict[str, list[str]] = {}
        for symbol in symbols:
            id_to_symbols.setdefault(self.resolve_id(symbol), []).append(symbol.lower())

        raw = await self._http.get(
            "/simple/price",
            {"ids": ",".join(id_to_symbols), "vs_currencies": self._provider.vs_currency},
        )
        payload = decode_json(raw)
        if not isinstance(payload, dict):
            raise DecodeError("simple/price: expected object")

        prices: dict[str, Decimal] = {}
        for cg_id, entry in payload.items():
            if not isinstance(entry, dict) or entry.get(self._provider.vs_currency) is None:
                continue
            try:
                price = Decimal(str(entry[self._provider.vs_currency]))
            except InvalidOperation as e:
                raise DecodeError(f"simple/price: invalid price for {cg_id}") from e
            for symbol in id_to_symbols.get(cg_id, []):
                prices[symbol] = price
        return prices
