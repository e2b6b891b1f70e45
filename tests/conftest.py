"""Shared test fixtures for the market data aggregator."""

from decimal import Decimal
from typing import Any

import pytest

from aggregator.config import (
    AggregationSettings,
    AppSettings,
    CacheSettings,
    FavoritesSettings,
    ReachabilitySettings,
    RetrySettings,
)
from aggregator.data.cache_store import CacheStore
from aggregator.models import Coin
from aggregator.providers.reachability import ReachabilityMonitor


# ---------------------------------------------------------------------------
# Sample /coins/markets payload (trimmed CoinGecko response)
# ---------------------------------------------------------------------------

MARKETS_PAYLOAD: list[dict[str, Any]] = [
    {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "image": "https://assets.coingecko.com/coins/images/1/large/bitcoin.png",
        "current_price": 65000.5,
        "market_cap": 1280000000000,
        "market_cap_rank": 1,
        "total_volume": 32000000000,
        "max_supply": 21000000,
        "price_change_percentage_24h": 1.1,
        "price_change_percentage_1h_in_currency": 0.2,
        "price_change_percentage_24h_in_currency": 1.25,
        "price_change_percentage_7d_in_currency": -3.5,
        "sparkline_in_7d": {"price": [64000.0, 64500.0, 65000.5]},
    },
    {
        "id": "ethereum",
        "symbol": "eth",
        "name": "Ethereum",
        "image": None,
        "current_price": 3200.1,
        "market_cap": 385000000000,
        "market_cap_rank": 2,
        "total_volume": 15000000000,
        "max_supply": None,
        "price_change_percentage_24h": -2.4,
        "price_change_percentage_1h_in_currency": -0.1,
        "price_change_percentage_24h_in_currency": None,
        "price_change_percentage_7d_in_currency": 4.0,
        "sparkline_in_7d": {"price": [3100.0, 3250.0]},
    },
    {
        "id": "solana",
        "symbol": "sol",
        "name": "Solana",
        "image": None,
        "current_price": 145.2,
        "market_cap": 67000000000,
        "market_cap_rank": 5,
        "total_volume": 2500000000,
        "max_supply": None,
        "price_change_percentage_24h": 6.3,
        "price_change_percentage_1h_in_currency": 0.5,
        "price_change_percentage_24h_in_currency": 6.3,
        "price_change_percentage_7d_in_currency": 12.0,
    },
]

GLOBAL_PAYLOAD: dict[str, Any] = {
    "data": {
        "active_cryptocurrencies": 15000,
        "markets": 1100,
        "total_market_cap": {"usd": 2400000000000, "eur": 2200000000000},
        "total_volume": {"usd": 95000000000},
        "market_cap_percentage": {"btc": 53.2, "eth": 16.1},
        "market_cap_change_percentage_24h_usd": -1.37,
    }
}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_settings(tmp_path) -> AppSettings:
    """Return AppSettings with zero retry delays and a temporary data directory."""
    return AppSettings(
        log_level="DEBUG",
        retry=RetrySettings(
            max_attempts=3,
            base_delay=0,
            batch_max_attempts=3,
            batch_base_delay=0,
        ),
        cache=CacheSettings(directory=str(tmp_path / "cache")),
        favorites=FavoritesSettings(db_path=str(tmp_path / "favorites.db")),
        reachability=ReachabilitySettings(enabled=False, assume_online=True),
        aggregation=AggregationSettings(
            reload_attempts=1,
            reload_delay=0,
            watchlist_attempts=1,
            watchlist_retry_delay=0,
            search_debounce=0,
        ),
    )


@pytest.fixture
def cache_store(mock_settings: AppSettings) -> CacheStore:
    return CacheStore(mock_settings.cache.directory)


@pytest.fixture
def reachability(mock_settings: AppSettings) -> ReachabilityMonitor:
    """Reachability monitor that is never started; tests flip it with set_online()."""
    return ReachabilityMonitor(mock_settings.reachability)


@pytest.fixture
def markets_payload() -> list[dict[str, Any]]:
    return [dict(item) for item in MARKETS_PAYLOAD]


@pytest.fixture
def global_payload() -> dict[str, Any]:
    return {"data": dict(GLOBAL_PAYLOAD["data"])}


@pytest.fixture
def make_coin():
    """Factory for Coin instances with Decimal fields from plain strings."""

    def _make(
        coin_id: str,
        symbol: str | None = None,
        name: str | None = None,
        price: str = "1",
        change: str | None = "0",
        volume: str = "0",
        market_cap: str = "0",
        rank: int | None = None,
    ) -> Coin:
        return Coin(
            id=coin_id,
            symbol=symbol or coin_id[:3],
            name=name or coin_id.capitalize(),
            price_usd=Decimal(price),
            market_cap=Decimal(market_cap),
            total_volume=Decimal(volume),
            price_change_percentage_24h=Decimal(change) if change is not None else None,
            market_cap_rank=rank,
        )

    return _make
