"""Pure slice derivation and filter/sort for the market view.

Nothing here touches state: the aggregation service calls these after every
mutation and the API calls them for one-off views with query overrides.
"""

from dataclasses import dataclass
from decimal import Decimal

from aggregator.models import Coin, MarketSegment, SortDirection, SortField

_ZERO = Decimal("0")


@dataclass
class MarketSlices:
    """Derived views of the full coin list."""

    trending: list[Coin]
    gainers: list[Coin]
    losers: list[Coin]


def _change_24h(coin: Coin) -> Decimal:
    return coin.change_24h if coin.change_24h is not None else _ZERO


def derive_slices(coins: list[Coin], size: int = 10) -> MarketSlices:
    """Compute trending, top gainers and top losers.

    Trending is the first `size` coins in provider (market cap) order.
    Gainers and losers sort by 24h change, missing values counting as zero.
    """
    return MarketSlices(
        trending=coins[:size],
        gainers=sorted(coins, key=_change_24h, reverse=True)[:size],
        losers=sorted(coins, key=_change_24h)[:size],
    )


def sort_key(field: SortField):  # type: ignore[no-untyped-def]
    """Key function for a sort field. Missing numerics sort as zero."""
    if field is SortField.COIN:
        return lambda c: c.name.lower()
    attr = {
        SortField.PRICE: "price_usd",
        SortField.DAILY_CHANGE: "price_change_percentage_24h",
        SortField.VOLUME: "total_volume",
        SortField.MARKET_CAP: "market_cap",
    }[field]

    def key(coin: Coin) -> Decimal:
        value = getattr(coin, attr)
        return value if value is not None else _ZERO

    return key


def matches_search(coin: Coin, query: str) -> bool:
    q = query.lower()
    return q in coin.name.lower() or q in coin.symbol.lower()


def filter_and_sort(
    coins: list[Coin],
    slices: MarketSlices,
    segment: MarketSegment,
    search_text: str,
    sort_field: SortField,
    sort_direction: SortDirection,
    favorite_ids: set[str],
) -> list[Coin]:
    """Build the visible list: segment base set, then search, then a stable sort."""
    if segment is MarketSegment.ALL:
        base = list(coins)
    elif segment is MarketSegment.TRENDING:
        base = list(slices.trending)
    elif segment is MarketSegment.GAINERS:
        base = list(slices.gainers)
    elif segment is MarketSegment.LOSERS:
        base = list(slices.losers)
    else:
        base = [c for c in coins if c.id in favorite_ids]

    if search_text:
        base = [c for c in base if matches_search(c, search_text)]

    # list.sort is stable in both directions
    base.sort(key=sort_key(sort_field), reverse=sort_direction is SortDirection.DESC)
    return base
