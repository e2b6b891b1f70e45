"""Tests for the JSON API routes using FastAPI's TestClient.

The aggregation service is real; its provider clients are AsyncMocks and its
coin list is seeded from a temporary cache.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from aggregator.api.app import create_app
from aggregator.api.ws import PriceHub
from aggregator.config import AppSettings
from aggregator.data.cache_store import COINS_CACHE, CacheStore
from aggregator.market_data.aggregation import MarketAggregationService
from aggregator.models import coins_from_api, global_from_api
from aggregator.providers.reachability import ReachabilityMonitor


@pytest.fixture
def favorite_ids() -> set[str]:
    return set()


@pytest.fixture
def service(
    mock_settings: AppSettings,
    cache_store: CacheStore,
    markets_payload,
    global_payload,
    favorite_ids: set[str],
) -> MarketAggregationService:
    cache_store.save_json(COINS_CACHE, markets_payload)
    coins = coins_from_api(markets_payload)

    market = MagicMock()
    market.fetch_coin_markets = AsyncMock(return_value=coins)
    market.fetch_coins = AsyncMock(return_value=coins[2:])
    watchlist = MagicMock()
    watchlist.fetch_watchlist_markets = AsyncMock(return_value=[])
    global_client = MagicMock()
    global_client.fetch_global_stats = AsyncMock(return_value=global_from_api(global_payload))

    async def toggle(coin_id: str) -> bool:
        if coin_id in favorite_ids:
            favorite_ids.discard(coin_id)
            return False
        favorite_ids.add(coin_id)
        return True

    async def remove(coin_id: str) -> None:
        favorite_ids.discard(coin_id)

    favorites = MagicMock()
    favorites.get_all_ids = MagicMock(side_effect=lambda: set(favorite_ids))
    favorites.toggle = AsyncMock(side_effect=toggle)
    favorites.remove = AsyncMock(side_effect=remove)

    poller = MagicMock()
    poller.start = AsyncMock()
    poller.stop = AsyncMock()
    poller.is_running = False
    poller.symbols = []

    sparklines = MagicMock()
    sparklines.fetch_sparkline = AsyncMock(return_value=[Decimal("150.5")])

    return MarketAggregationService(
        market_client=market,
        watchlist_client=watchlist,
        global_client=global_client,
        favorites=favorites,
        cache=cache_store,
        poller=poller,
        settings=mock_settings.aggregation,
        polling=mock_settings.polling,
        sparkline_client=sparklines,
    )


@pytest.fixture
def client(mock_settings: AppSettings, service: MarketAggregationService):
    app = create_app()
    app.state.aggregation = service
    app.state.reachability = ReachabilityMonitor(mock_settings.reachability)
    with TestClient(app) as test_client:
        yield test_client


class TestReadEndpoints:
    def test_health(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body == {"status": "success", "online": True, "coins": 3, "refreshing": False}

    def test_coins_default_view(self, client: TestClient) -> None:
        body = client.get("/api/coins").json()

        assert body["status"] == "success"
        assert body["error"] is None
        assert [c["id"] for c in body["coins"]] == ["bitcoin", "ethereum", "solana"]
        # decimals are serialized as strings
        assert body["coins"][0]["price_usd"] == "65000.5"

    def test_coins_query_overrides(self, client: TestClient) -> None:
        body = client.get("/api/coins", params={"segment": "gainers", "sort": "price", "direction": "asc"}).json()
        assert [c["id"] for c in body["coins"]] == ["solana", "ethereum", "bitcoin"]

        # stored state untouched
        assert client.get("/api/view").json()["segment"] == "all"

    def test_coins_rejects_unknown_segment(self, client: TestClient) -> None:
        assert client.get("/api/coins", params={"segment": "moonshots"}).status_code == 422

    def test_slices(self, client: TestClient) -> None:
        body = client.get("/api/slices").json()
        assert [c["id"] for c in body["gainers"]] == ["solana", "bitcoin", "ethereum"]
        assert [c["id"] for c in body["losers"]] == ["ethereum", "bitcoin", "solana"]
        assert len(body["trending"]) == 3

    def test_global_unavailable_before_first_refresh(self, client: TestClient) -> None:
        assert client.get("/api/global").status_code == 503

    def test_lookup(self, client: TestClient, service: MarketAggregationService) -> None:
        body = client.get("/api/lookup", params={"ids": "sol, bitcoin"}).json()
        assert [c["id"] for c in body] == ["solana"]
        service._market.fetch_coins.assert_awaited_once_with(["sol", "bitcoin"])

    def test_sparkline(self, client: TestClient) -> None:
        body = client.get("/api/coins/solana/sparkline").json()
        assert body == {"coin_id": "solana", "prices": ["150.5"]}

    def test_sparkline_unknown_coin(self, client: TestClient) -> None:
        assert client.get("/api/coins/nope/sparkline").status_code == 404


class TestMutatingEndpoints:
    def test_update_view(self, client: TestClient) -> None:
        body = client.put(
            "/api/view",
            json={"segment": "losers", "search": "eth", "sort_field": "coin", "sort_direction": "asc"},
        ).json()
        assert body == {"segment": "losers", "search": "eth", "sort_field": "coin", "sort_direction": "asc"}

        coins = client.get("/api/coins").json()["coins"]
        assert [c["id"] for c in coins] == ["ethereum"]

    def test_toggle_sort(self, client: TestClient) -> None:
        assert client.post("/api/view/sort/volume").json()["sort_direction"] == "asc"
        assert client.post("/api/view/sort/volume").json()["sort_direction"] == "desc"

    def test_refresh_then_global(self, client: TestClient) -> None:
        body = client.post("/api/refresh").json()
        assert body == {"status": "success", "error": None, "count": 3}

        stats = client.get("/api/global").json()["stats"]
        assert stats[0] == {"title": "Market Cap", "value": "$2.40T", "icon_name": "globe"}

    def test_favorites_toggle_and_remove(self, client: TestClient, favorite_ids: set[str]) -> None:
        assert client.post("/api/favorites/bitcoin").json() == {"coin_id": "bitcoin", "favorite": True}
        assert favorite_ids == {"bitcoin"}
        assert client.get("/api/watchlist").json()["favorite_ids"] == ["bitcoin"]

        coins = client.get("/api/coins", params={"segment": "favorites"}).json()["coins"]
        assert [c["id"] for c in coins] == ["bitcoin"]

        assert client.delete("/api/favorites/bitcoin").json() == {"coin_id": "bitcoin", "favorite": False}
        assert favorite_ids == set()


class TestPriceHub:
    """WebSocket broadcast of live price ticks."""

    @pytest.mark.asyncio
    async def test_broadcast_sends_prices_as_strings(self) -> None:
        hub = PriceHub()
        ws = AsyncMock()
        await hub.connect(ws)

        await hub.broadcast({"btc": Decimal("65000.5")})

        ws.accept.assert_awaited_once()
        ws.send_json.assert_awaited_once_with({"type": "prices", "prices": {"btc": "65000.5"}})

    @pytest.mark.asyncio
    async def test_broken_connection_dropped(self) -> None:
        hub = PriceHub()
        healthy, broken = AsyncMock(), AsyncMock()
        broken.send_json.side_effect = RuntimeError("closed")
        await hub.connect(healthy)
        await hub.connect(broken)

        await hub.broadcast({"eth": Decimal("3200")})

        assert hub.connections == [healthy]

    @pytest.mark.asyncio
    async def test_publish_schedules_broadcast(self) -> None:
        hub = PriceHub()
        ws = AsyncMock()
        await hub.connect(ws)

        hub.publish({"sol": Decimal("150")})
        await asyncio.sleep(0.01)

        ws.send_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_new_client_receives_snapshot(self) -> None:
        hub = PriceHub()
        hub.publish({"btc": Decimal("1")})
        hub.publish({"eth": Decimal("2")})
        ws = AsyncMock()

        await hub.connect(ws)

        ws.send_json.assert_awaited_once_with(
            {"type": "snapshot", "prices": {"btc": "1", "eth": "2"}}
        )

    def test_websocket_endpoint_accepts(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/prices") as websocket:
            websocket.send_text("ping")
