"""Entry point for the market data aggregator.

Wires all components together, optionally embeds the FastAPI JSON API, and
starts the aggregation timers. When the API is enabled (default), the
service and the API share a single asyncio event loop via uvicorn's
programmatic API and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. CacheStore (last good provider payloads on disk)
2. FavoritesStore (aiosqlite-backed favorite set)
3. ReachabilityMonitor (TCP probe of the CoinGecko host)
4. ProviderHttp clients (CoinGecko, Coinbase)
5. MarketDataClient, WatchlistDataClient, GlobalStatsClient
6. CoinbaseSpotClient, BinanceSparklineClient
7. LivePricePoller (CoinGecko or Coinbase spot prices)
8. MarketAggregationService
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from aggregator.config import AppSettings
from aggregator.data.cache_store import CacheStore
from aggregator.data.favorites import FavoritesStore
from aggregator.logging import get_logger, setup_logging
from aggregator.market_data.aggregation import MarketAggregationService
from aggregator.market_data.live_price import LivePricePoller
from aggregator.providers.binance import BinanceSparklineClient
from aggregator.providers.coinbase import CoinbaseSpotClient
from aggregator.providers.coingecko import MarketDataClient
from aggregator.providers.global_stats import GlobalStatsClient
from aggregator.providers.http import ProviderHttp
from aggregator.providers.reachability import ReachabilityMonitor
from aggregator.providers.watchlist import WatchlistDataClient


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Note: Does NOT connect the favorites database or start any timers --
    that happens in _start_components().

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("aggregator.main")

    cache = CacheStore(settings.cache.directory)
    favorites = FavoritesStore(settings.favorites.db_path)
    reachability = ReachabilityMonitor(settings.reachability)

    default_params: dict[str, str] = {}
    api_key = settings.provider.coingecko_api_key.get_secret_value()
    if api_key:
        default_params["x_cg_demo_api_key"] = api_key
    else:
        logger.info("no_coingecko_api_key", note="Using the public rate-limited tier.")

    coingecko_http = ProviderHttp(
        settings.provider.coingecko_base_url,
        timeout=settings.provider.request_timeout,
        default_params=default_params,
    )
    coinbase_http = ProviderHttp(
        settings.provider.coinbase_base_url,
        timeout=settings.provider.request_timeout,
    )

    market_client = MarketDataClient(
        coingecko_http, cache, reachability, settings.provider, settings.retry
    )
    watchlist_client = WatchlistDataClient(
        coingecko_http, cache, reachability, settings.provider, settings.retry
    )
    global_client = GlobalStatsClient(coingecko_http, cache, reachability, settings.retry)
    coinbase_client = CoinbaseSpotClient(coinbase_http)
    sparkline_client = BinanceSparklineClient()

    if settings.polling.live_price_source == "coinbase":
        poller = LivePricePoller(coinbase_client, settings.polling.live_price_interval)
    else:
        poller = LivePricePoller(market_client, settings.polling.live_price_interval)

    aggregation = MarketAggregationService(
        market_client=market_client,
        watchlist_client=watchlist_client,
        global_client=global_client,
        favorites=favorites,
        cache=cache,
        poller=poller,
        settings=settings.aggregation,
        polling=settings.polling,
        sparkline_client=sparkline_client,
    )

    return {
        "cache": cache,
        "favorites": favorites,
        "reachability": reachability,
        "coingecko_http": coingecko_http,
        "coinbase_http": coinbase_http,
        "market_client": market_client,
        "watchlist_client": watchlist_client,
        "global_client": global_client,
        "coinbase_client": coinbase_client,
        "sparkline_client": sparkline_client,
        "poller": poller,
        "aggregation": aggregation,
    }


async def _start_components(settings: AppSettings, components: dict[str, Any]) -> None:
    await components["favorites"].connect()
    if settings.reachability.enabled:
        await components["reachability"].start()
    await components["aggregation"].start()


async def _stop_components(components: dict[str, Any]) -> None:
    """Stop timers first, then release network and database handles."""
    await components["aggregation"].stop()
    await components["reachability"].stop()
    await components["sparkline_client"].close()
    await components["coingecko_http"].close()
    await components["coinbase_http"].close()
    await components["favorites"].close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: stores components on app.state, subscribes the price hub to
    the live price poller, connects favorites, starts reachability probing
    and the aggregation timers.

    On shutdown: stops timers and closes all clients.
    """
    logger = get_logger("aggregator.main")
    settings = app.state.settings
    components = app.state.components

    app.state.aggregation = components["aggregation"]
    app.state.reachability = components["reachability"]

    # Push every live price tick to WebSocket clients
    unsubscribe_hub = components["poller"].subscribe(app.state.hub.publish)

    await _start_components(settings, components)
    logger.info("lifespan_started", refresh_policy=settings.aggregation.refresh_policy)

    yield

    unsubscribe_hub()
    await _stop_components(components)
    logger.info("market_aggregator_stopped")


async def run() -> None:
    """Run the market data aggregator.

    When the API is enabled (API_ENABLED=true, the default), uvicorn serves
    the JSON API and the lifespan manages component startup/shutdown.

    When the API is disabled, the timers run headless until SIGINT/SIGTERM.
    """
    settings = AppSettings()

    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("aggregator.main")

    components = _build_components(settings)

    if settings.api.enabled:
        from aggregator.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info("starting_with_api", host=settings.api.host, port=settings.api.port)

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def _graceful_handler() -> None:
            logger.info("graceful_shutdown_signal")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _graceful_handler)

        logger.info(
            "starting_without_api",
            full_refresh_interval=settings.polling.full_refresh_interval,
            live_price_source=settings.polling.live_price_source,
        )

        try:
            await _start_components(settings, components)
            await stop_event.wait()
        finally:
            await _stop_components(components)
            logger.info("market_aggregator_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
