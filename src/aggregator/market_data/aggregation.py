"""Market aggregation service -- the single owner of in-memory market state.

Holds the authoritative coin list, the derived trending/gainers/losers
slices, the watchlist, the global snapshot and the filter/sort state. Every
mutation happens on the event loop and ends with _recompute(), which rebuilds
the filtered view from scratch.

Three independent timers feed it:
- full refresh (coins, watchlist, global stats), default every 30s
- watchlist refresh, default every 15s
- live price ticks from LivePricePoller, default every 5s

They are not mutually exclusive. A live price patch landing just before a
full refresh is simply replaced by the new list (last write wins).
"""

import asyncio
from collections.abc import Callable
from dataclasses import replace
from decimal import Decimal

from aggregator.config import AggregationSettings, PollingSettings
from aggregator.data.cache_store import COINS_CACHE, CacheStore
from aggregator.data.favorites import FavoritesStore
from aggregator.exceptions import AggregatorError
from aggregator.logging import get_logger
from aggregator.market_data.filtering import MarketSlices, derive_slices, filter_and_sort
from aggregator.market_data.live_price import LivePricePoller
from aggregator.market_data.stats import Stat, build_market_stats
from aggregator.models import (
    Coin,
    GlobalMarketSnapshot,
    LoadState,
    LoadStatus,
    MarketSegment,
    SortDirection,
    SortField,
)
from aggregator.providers.binance import BinanceSparklineClient
from aggregator.providers.coingecko import MarketDataClient
from aggregator.providers.global_stats import GlobalStatsClient
from aggregator.providers.watchlist import WatchlistDataClient

logger = get_logger(__name__)


class MarketAggregationService:
    """Aggregates provider data into coin slices and a filtered, sorted view.

    Args:
        market_client: Top-N listings and id lookups.
        watchlist_client: Listings for the favorite set.
        global_client: Aggregate market statistics.
        favorites: Persistent favorite set (must be connected before start()).
        cache: Cache store; the full coin list is persisted after each refresh.
        poller: Live price poller; restarted whenever the symbol set changes.
        settings: Aggregation behaviour (slice size, refresh policy, retries).
        polling: Timer intervals.
        sparkline_client: Optional Binance fallback for coins without a sparkline.
    """

    def __init__(
        self,
        market_client: MarketDataClient,
        watchlist_client: WatchlistDataClient,
        global_client: GlobalStatsClient,
        favorites: FavoritesStore,
        cache: CacheStore,
        poller: LivePricePoller,
        settings: AggregationSettings,
        polling: PollingSettings,
        sparkline_client: BinanceSparklineClient | None = None,
    ) -> None:
        self._market = market_client
        self._watchlist = watchlist_client
        self._global_client = global_client
        self._favorites = favorites
        self._cache = cache
        self._poller = poller
        self._settings = settings
        self._polling = polling
        self._sparklines = sparkline_client

        self._state = LoadState()
        self._all_coins: list[Coin] = []
        self._slices = MarketSlices(trending=[], gainers=[], losers=[])
        self._filtered: list[Coin] = []
        self._watchlist_coins: list[Coin] = []
        self._global: GlobalMarketSnapshot | None = None
        self._favorite_ids: set[str] = favorites.get_all_ids()

        self._segment = MarketSegment.ALL
        self._search_text = ""
        self._sort_field = SortField.MARKET_CAP
        self._sort_direction = SortDirection.DESC

        self._refreshes_in_flight = 0
        self._watchlist_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._search_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._timers: list[asyncio.Task] = []  # type: ignore[type-arg]
        self._unsubscribe: Callable[[], None] | None = poller.subscribe(self.apply_live_prices)

        self._load_cached()

    # ──────────────────────────────────────────────
    # Read-only state
    # ──────────────────────────────────────────────

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def all_coins(self) -> list[Coin]:
        return list(self._all_coins)

    @property
    def trending_coins(self) -> list[Coin]:
        return list(self._slices.trending)

    @property
    def top_gainers(self) -> list[Coin]:
        return list(self._slices.gainers)

    @property
    def top_losers(self) -> list[Coin]:
        return list(self._slices.losers)

    @property
    def filtered_coins(self) -> list[Coin]:
        return list(self._filtered)

    @property
    def watchlist_coins(self) -> list[Coin]:
        return list(self._watchlist_coins)

    @property
    def favorite_ids(self) -> set[str]:
        return set(self._favorite_ids)

    @property
    def global_snapshot(self) -> GlobalMarketSnapshot | None:
        return self._global

    @property
    def segment(self) -> MarketSegment:
        return self._segment

    @property
    def search_text(self) -> str:
        return self._search_text

    @property
    def sort_field(self) -> SortField:
        return self._sort_field

    @property
    def sort_direction(self) -> SortDirection:
        return self._sort_direction

    @property
    def is_refreshing(self) -> bool:
        return self._refreshes_in_flight > 0

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Start the full-refresh and watchlist timers. The first refresh runs immediately."""
        self._favorite_ids = self._favorites.get_all_ids()
        self._recompute()
        if self._unsubscribe is None:
            self._unsubscribe = self._poller.subscribe(self.apply_live_prices)
        self._timers = [
            asyncio.create_task(self._auto_refresh_loop()),
            asyncio.create_task(self._watchlist_loop()),
        ]
        logger.info(
            "aggregation_started",
            full_refresh_interval=self._polling.full_refresh_interval,
            watchlist_interval=self._polling.watchlist_interval,
            refresh_policy=self._settings.refresh_policy,
        )

    async def stop(self) -> None:
        tasks = [*self._timers, self._watchlist_task, self._search_task]
        for task in tasks:
            if task is not None:
                task.cancel()
        for task in tasks:
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timers = []
        self._watchlist_task = None
        self._search_task = None
        await self._poller.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.info("aggregation_stopped")

    async def _auto_refresh_loop(self) -> None:
        while True:
            try:
                await self.refresh_all_data()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("auto_refresh_error", exc_info=True)
            await asyncio.sleep(self._polling.full_refresh_interval)

    async def _watchlist_loop(self) -> None:
        while True:
            await asyncio.sleep(self._polling.watchlist_interval)
            try:
                await self.load_watchlist_data()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("watchlist_refresh_error", exc_info=True)

    # ──────────────────────────────────────────────
    # Loading
    # ──────────────────────────────────────────────

    def _load_cached(self) -> None:
        """Seed state from the on-disk cache so data is available before the first fetch."""
        cached = self._cache.load_coins(COINS_CACHE)
        if cached:
            self._set_coins(cached)
            self._state = LoadState.success(cached)
            logger.info("cached_coins_loaded", count=len(cached))
        self._recompute()

    async def refresh_all_data(self, manual: bool = False) -> None:
        """Reload coins, then the watchlist, then global stats.

        With refresh_policy "exclusive" a refresh requested while another is
        running is skipped; with "concurrent" both run to completion.
        """
        if self._refreshes_in_flight and self._settings.refresh_policy == "exclusive":
            logger.info("refresh_skipped", manual=manual, reason="refresh_in_flight")
            return

        self._refreshes_in_flight += 1
        try:
            await self.load_all_data()
            await self.load_watchlist_data()
            await self.load_global_stats()
        finally:
            self._refreshes_in_flight -= 1

    async def load_all_data(self) -> None:
        """Fetch the coin list and move the load state machine.

        Success replaces the list wholesale. Failure keeps previously loaded
        coins as stale-success and only reports failure when there is nothing
        to show. Cancellation restores the prior state and propagates.
        """
        previous = self._state
        if not self._all_coins and self._state.status is not LoadStatus.LOADING:
            self._state = LoadState.loading()

        attempts = max(1, self._settings.reload_attempts)
        last_error: AggregatorError | None = None
        fetched: list[Coin] | None = None
        try:
            for attempt in range(1, attempts + 1):
                try:
                    coins = await self._market.fetch_coin_markets()
                except AggregatorError as e:
                    last_error = e
                    logger.warning(
                        "load_all_data_attempt_failed",
                        attempt=attempt,
                        max_attempts=attempts,
                        error=str(e),
                    )
                    if attempt < attempts:
                        await asyncio.sleep(self._settings.reload_delay)
                    continue

                fetched = coins
                break
        except asyncio.CancelledError:
            self._state = previous
            self._recompute()
            raise

        if fetched is not None:
            self._apply_fetched_coins(fetched)
            await self._sync_live_prices()
            return

        logger.error("load_all_data_failed", error=str(last_error), have_stale=bool(self._all_coins))
        if self._all_coins:
            self._state = LoadState.success(self._all_coins)
        else:
            self._state = LoadState.failure(str(last_error))
        self._recompute()

    def _apply_fetched_coins(self, coins: list[Coin]) -> None:
        self._set_coins(coins)
        self._state = LoadState.success(coins)
        try:
            self._cache.save_coins(COINS_CACHE, coins)
        except OSError as e:
            logger.warning("coins_cache_write_failed", error=str(e))
        self._recompute()

    async def load_watchlist_data(self) -> None:
        """Reload market data for the favorite set. Failures leave the old list in place."""
        ids = sorted(self._favorite_ids)
        if not ids:
            self._watchlist_coins = []
            return

        attempts = max(1, self._settings.watchlist_attempts)
        for attempt in range(1, attempts + 1):
            try:
                self._watchlist_coins = await self._watchlist.fetch_watchlist_markets(ids)
                return
            except AggregatorError as e:
                if attempt == attempts:
                    logger.warning("load_watchlist_failed", attempts=attempts, error=str(e))
                    return
                await asyncio.sleep(self._settings.watchlist_retry_delay)

    async def load_global_stats(self) -> None:
        try:
            self._global = await self._global_client.fetch_global_stats()
        except AggregatorError as e:
            logger.warning("load_global_stats_failed", error=str(e))

    async def fetch_coins(self, ids: list[str]) -> list[Coin]:
        """Ad-hoc lookup by ids; never raises for provider failures."""
        return await self._market.fetch_coins(ids)

    def reload_watchlist(self) -> asyncio.Task:  # type: ignore[type-arg]
        """Cancel any in-flight watchlist reload and start a new one."""
        if self._watchlist_task is not None and not self._watchlist_task.done():
            self._watchlist_task.cancel()
        self._watchlist_task = asyncio.create_task(self.load_watchlist_data())
        return self._watchlist_task

    # ──────────────────────────────────────────────
    # Live prices
    # ──────────────────────────────────────────────

    async def _sync_live_prices(self) -> None:
        """(Re)start the poller when the set of listed symbols changes."""
        symbols = sorted({c.symbol.lower() for c in self._all_coins})
        if self._poller.is_running and sorted(self._poller.symbols) == symbols:
            return
        await self._poller.start(symbols, interval=self._polling.live_price_interval)

    def apply_live_prices(self, prices: dict[str, Decimal]) -> None:
        """Patch price_usd of coins whose lowercase symbol has a new price.

        Every other field is left untouched.
        """
        if not prices or not self._all_coins:
            return
        patched = [
            replace(c, price_usd=prices[c.symbol.lower()]) if c.symbol.lower() in prices else c
            for c in self._all_coins
        ]
        self._set_coins(patched, learn=False)
        if self._state.status is LoadStatus.SUCCESS:
            self._state = LoadState.success(patched)
        self._recompute()

    # ──────────────────────────────────────────────
    # Filter / sort state
    # ──────────────────────────────────────────────

    def set_segment(self, segment: MarketSegment) -> None:
        self._segment = segment
        self._recompute()

    def set_sort(self, field: SortField, direction: SortDirection) -> None:
        self._sort_field = field
        self._sort_direction = direction
        self._recompute()

    def toggle_sort(self, field: SortField) -> None:
        """Same field flips the direction; a new field starts ascending."""
        if self._sort_field is field:
            self._sort_direction = self._sort_direction.toggled()
        else:
            self._sort_field = field
            self._sort_direction = SortDirection.ASC
        self._recompute()

    def set_search_text(self, text: str, debounce: bool = True) -> None:
        """Update the search query; the view is recomputed after the debounce window."""
        self._search_text = text
        if self._search_task is not None and not self._search_task.done():
            self._search_task.cancel()
        if debounce and self._settings.search_debounce > 0:
            self._search_task = asyncio.create_task(self._debounced_recompute())
        else:
            self._recompute()

    async def _debounced_recompute(self) -> None:
        await asyncio.sleep(self._settings.search_debounce)
        self._recompute()

    def view(
        self,
        segment: MarketSegment | None = None,
        search_text: str | None = None,
        sort_field: SortField | None = None,
        sort_direction: SortDirection | None = None,
    ) -> list[Coin]:
        """Filtered view with optional overrides, without touching stored state."""
        if self._state.status is not LoadStatus.SUCCESS:
            return []
        return filter_and_sort(
            self._all_coins,
            self._slices,
            segment if segment is not None else self._segment,
            search_text if search_text is not None else self._search_text,
            sort_field if sort_field is not None else self._sort_field,
            sort_direction if sort_direction is not None else self._sort_direction,
            self._favorite_ids,
        )

    # ──────────────────────────────────────────────
    # Favorites
    # ──────────────────────────────────────────────

    def is_favorite(self, coin_id: str) -> bool:
        return self._favorites.is_favorite(coin_id)

    async def toggle_favorite(self, coin_id: str) -> bool:
        """Flip favorite membership. Returns True if coin_id is now a favorite."""
        now_favorite = await self._favorites.toggle(coin_id)
        self._favorites_changed()
        return now_favorite

    async def remove_favorite(self, coin_id: str) -> None:
        await self._favorites.remove(coin_id)
        self._favorites_changed()

    def _favorites_changed(self) -> None:
        self._favorite_ids = self._favorites.get_all_ids()
        self._recompute()
        self.reload_watchlist()

    # ──────────────────────────────────────────────
    # Extras
    # ──────────────────────────────────────────────

    def find_coin(self, coin_id: str) -> Coin | None:
        for coin in (*self._all_coins, *self._watchlist_coins):
            if coin.id == coin_id:
                return coin
        return None

    async def sparkline_for(self, coin_id: str) -> list[Decimal] | None:
        """The coin's own 7d sparkline, else Binance daily closes. None if coin_id is unknown."""
        coin = self.find_coin(coin_id)
        if coin is None:
            return None
        if coin.sparkline_7d:
            return list(coin.sparkline_7d)
        if self._sparklines is None:
            return []
        return await self._sparklines.fetch_sparkline(coin.symbol)

    def market_stats(self) -> list[Stat]:
        if self._global is None:
            return []
        return build_market_stats(self._global)

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    def _set_coins(self, coins: list[Coin], learn: bool = True) -> None:
        self._all_coins = list(coins)
        self._slices = derive_slices(self._all_coins, self._settings.slice_size)
        if learn:
            self._market.learn_ids(self._all_coins)

    def _recompute(self) -> None:
        self._filtered = self.view()
