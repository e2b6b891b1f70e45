"""Provider clients -- CoinGecko, Coinbase and Binance over HTTP, plus reachability."""

from aggregator.providers.binance import BinanceSparklineClient
from aggregator.providers.coinbase import CoinbaseSpotClient
from aggregator.providers.coingecko import MarketDataClient, coingecko_id
from aggregator.providers.global_stats import GlobalStatsClient
from aggregator.providers.http import ProviderHttp, fetch_with_retry
from aggregator.providers.reachability import ReachabilityMonitor
from aggregator.providers.watchlist import WatchlistDataClient

__all__ = [
    "BinanceSparklineClient",
    "CoinbaseSpotClient",
    "GlobalStatsClient",
    "MarketDataClient",
    "ProviderHttp",
    "ReachabilityMonitor",
    "WatchlistDataClient",
    "coingecko_id",
    "fetch_with_retry",
]
