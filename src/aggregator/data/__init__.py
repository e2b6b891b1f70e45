"""Local persistence: provider payload cache and favorite coin set."""

from aggregator.data.cache_store import (
    COINS_CACHE,
    GLOBAL_CACHE,
    LOOKUP_CACHE,
    WATCHLIST_CACHE,
    CacheStore,
)
from aggregator.data.favorites import FavoritesStore

__all__ = [
    "COINS_CACHE",
    "GLOBAL_CACHE",
    "LOOKUP_CACHE",
    "WATCHLIST_CACHE",
    "CacheStore",
    "FavoritesStore",
]
