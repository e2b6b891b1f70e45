"""Shared data models for the market data aggregator.

All prices, volumes, caps and percentages are Decimal. Decoding goes through
Decimal(str(value)) so float noise from the JSON parser never leaks in.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from aggregator.exceptions import DecodeError


class MarketSegment(str, Enum):
    """Top-level filter mode for the market view."""

    ALL = "all"
    TRENDING = "trending"
    GAINERS = "gainers"
    LOSERS = "losers"
    FAVORITES = "favorites"


class SortField(str, Enum):
    """Column the market view is sorted by."""

    COIN = "coin"
    PRICE = "price"
    DAILY_CHANGE = "daily_change"
    VOLUME = "volume"
    MARKET_CAP = "market_cap"


class SortDirection(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"

    def toggled(self) -> "SortDirection":
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC


class LoadStatus(str, Enum):
    """Coin list load status."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class Coin:
    """Market snapshot of a single coin from the /coins/markets endpoint."""

    id: str
    symbol: str
    name: str
    image: str | None = None
    price_usd: Decimal | None = None
    market_cap: Decimal | None = None
    total_volume: Decimal | None = None
    price_change_percentage_1h: Decimal | None = None
    price_change_percentage_24h: Decimal | None = None
    price_change_percentage_7d: Decimal | None = None
    market_cap_rank: int | None = None
    max_supply: Decimal | None = None
    sparkline_7d: list[Decimal] | None = None

    @property
    def change_24h(self) -> Decimal | None:
        return self.price_change_percentage_24h

    @property
    def volume_24h(self) -> Decimal | None:
        return self.total_volume


@dataclass
class GlobalMarketSnapshot:
    """Aggregate market totals from the /global endpoint."""

    total_market_cap: dict[str, Decimal]
    total_volume: dict[str, Decimal]
    market_cap_percentage: dict[str, Decimal]
    market_cap_change_percentage_24h_usd: Decimal
    active_cryptocurrencies: int
    markets: int


@dataclass
class LoadState:
    """Coin list load state: idle -> loading -> success(coins) | failure(error)."""

    status: LoadStatus = LoadStatus.IDLE
    coins: list[Coin] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def success(cls, coins: list[Coin]) -> "LoadState":
        return cls(status=LoadStatus.SUCCESS, coins=list(coins))

    @classmethod
    def failure(cls, message: str) -> "LoadState":
        return cls(status=LoadStatus.FAILURE, error=message)

    @classmethod
    def loading(cls) -> "LoadState":
        return cls(status=LoadStatus.LOADING)


# ──────────────────────────────────────────────
# Decoding
# ──────────────────────────────────────────────


def _optional_decimal(payload: dict, key: str) -> Decimal | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise DecodeError(f"{key}: expected number, got bool")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise DecodeError(f"{key}: invalid number {value!r}") from e


def _required_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise DecodeError(f"{key}: expected string, got {type(value).__name__}")
    return value


def _decimal_map(payload: dict, key: str) -> dict[str, Decimal]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise DecodeError(f"{key}: expected object")
    return {k: _optional_decimal(value, k) or Decimal("0") for k in value}


def coin_from_api(payload: Any) -> Coin:
    """Decode one element of a /coins/markets response.

    The 24h change prefers price_change_percentage_24h_in_currency and falls
    back to the always-present price_change_percentage_24h.

    Raises:
        DecodeError: If required fields are missing or mistyped.
    """
    if not isinstance(payload, dict):
        raise DecodeError(f"coin: expected object, got {type(payload).__name__}")

    change_24h = _optional_decimal(payload, "price_change_percentage_24h_in_currency")
    if change_24h is None:
        change_24h = _optional_decimal(payload, "price_change_percentage_24h")

    sparkline: list[Decimal] | None = None
    raw_sparkline = payload.get("sparkline_in_7d")
    if isinstance(raw_sparkline, dict) and raw_sparkline.get("price") is not None:
        prices = raw_sparkline["price"]
        if not isinstance(prices, list):
            raise DecodeError("sparkline_in_7d.price: expected array")
        sparkline = [Decimal(str(p)) for p in prices if p is not None]

    rank = payload.get("market_cap_rank")
    if rank is not None and not isinstance(rank, int):
        raise DecodeError(f"market_cap_rank: expected integer, got {rank!r}")

    image = payload.get("image")

    return Coin(
        id=_required_str(payload, "id"),
        symbol=_required_str(payload, "symbol"),
        name=_required_str(payload, "name"),
        image=image if isinstance(image, str) else None,
        price_usd=_optional_decimal(payload, "current_price"),
        market_cap=_optional_decimal(payload, "market_cap"),
        total_volume=_optional_decimal(payload, "total_volume"),
        price_change_percentage_1h=_optional_decimal(
            payload, "price_change_percentage_1h_in_currency"
        ),
        price_change_percentage_24h=change_24h,
        price_change_percentage_7d=_optional_decimal(
            payload, "price_change_percentage_7d_in_currency"
        ),
        market_cap_rank=rank,
        max_supply=_optional_decimal(payload, "max_supply"),
        sparkline_7d=sparkline,
    )


def coins_from_api(payload: Any) -> list[Coin]:
    """Decode a full /coins/markets array. All-or-nothing."""
    if not isinstance(payload, list):
        raise DecodeError(f"coin list: expected array, got {type(payload).__name__}")
    return [coin_from_api(item) for item in payload]


def global_from_api(payload: Any) -> GlobalMarketSnapshot:
    """Decode the /global response, unwrapping its data envelope."""
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise DecodeError("global: missing data envelope")
    data = payload["data"]

    change = _optional_decimal(data, "market_cap_change_percentage_24h_usd")
    if change is None:
        raise DecodeError("market_cap_change_percentage_24h_usd: missing")
    active = data.get("active_cryptocurrencies")
    markets = data.get("markets")
    if not isinstance(active, int) or not isinstance(markets, int):
        raise DecodeError("active_cryptocurrencies/markets: expected integers")

    return GlobalMarketSnapshot(
        total_market_cap=_decimal_map(data, "total_market_cap"),
        total_volume=_decimal_map(data, "total_volume"),
        market_cap_percentage=_decimal_map(data, "market_cap_percentage"),
        market_cap_change_percentage_24h_usd=change,
        active_cryptocurrencies=active,
        markets=markets,
    )


# ──────────────────────────────────────────────
# Encoding (provider response shape, used by the cache)
# ──────────────────────────────────────────────


def _num(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def coin_to_api(coin: Coin) -> dict[str, Any]:
    """Encode a Coin back into the /coins/markets element shape."""
    payload: dict[str, Any] = {
        "id": coin.id,
        "symbol": coin.symbol,
        "name": coin.name,
        "image": coin.image,
        "current_price": _num(coin.price_usd),
        "market_cap": _num(coin.market_cap),
        "total_volume": _num(coin.total_volume),
        "price_change_percentage_1h_in_currency": _num(coin.price_change_percentage_1h),
        "price_change_percentage_24h_in_currency": _num(coin.price_change_percentage_24h),
        "price_change_percentage_7d_in_currency": _num(coin.price_change_percentage_7d),
        "market_cap_rank": coin.market_cap_rank,
        "max_supply": _num(coin.max_supply),
    }
    if coin.sparkline_7d is not None:
        payload["sparkline_in_7d"] = {"price": [float(p) for p in coin.sparkline_7d]}
    return payload
