"""File-backed cache of the last successful provider payloads.

Each logical dataset lives in its own JSON file under the cache directory,
stored in the same shape the provider returned it. Writes go to a temporary
sibling and are moved into place with os.replace, so a reader always sees
either the previous complete payload or the new one.
"""

import json
import os
from typing import Any

from aggregator.exceptions import DecodeError
from aggregator.logging import get_logger
from aggregator.models import (
    Coin,
    GlobalMarketSnapshot,
    coin_to_api,
    coins_from_api,
    global_from_api,
)

logger = get_logger(__name__)

COINS_CACHE = "coins_cache.json"
WATCHLIST_CACHE = "watchlist_cache.json"
LOOKUP_CACHE = "lookup_cache.json"
GLOBAL_CACHE = "global_cache.json"


class CacheStore:
    """Named whole-value cache entries on local disk.

    Usage:
        store = CacheStore("data/cache")
        store.save(COINS_CACHE, response.content)
        coins = store.load_coins(COINS_CACHE)
    """

    def __init__(self, directory: str = "data/cache") -> None:
        self._directory = directory

    def path_for(self, name: str) -> str:
        return os.path.join(self._directory, name)

    def save(self, name: str, raw: bytes) -> None:
        """Atomically replace the entry with raw bytes."""
        os.makedirs(self._directory, exist_ok=True)
        path = self.path_for(name)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "wb") as f:
            f.write(raw)
        os.replace(tmp_path, path)
        logger.debug("cache_entry_written", name=name, size=len(raw))

    def save_json(self, name: str, payload: Any) -> None:
        self.save(name, json.dumps(payload).encode("utf-8"))

    def save_coins(self, name: str, coins: list[Coin]) -> None:
        self.save_json(name, [coin_to_api(c) for c in coins])

    def load(self, name: str) -> Any | None:
        """Return the parsed entry, or None if missing or unreadable."""
        path = self.path_for(name)
        try:
            with open(path, "rb") as f:
                return json.loads(f.read())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("cache_entry_unreadable", name=name, error=str(e))
            return None

    def load_coins(self, name: str = COINS_CACHE) -> list[Coin] | None:
        payload = self.load(name)
        if payload is None:
            return None
        try:
            return coins_from_api(payload)
        except DecodeError as e:
            logger.warning("cache_entry_undecodable", name=name, error=str(e))
            return None

    def load_global(self, name: str = GLOBAL_CACHE) -> GlobalMarketSnapshot | None:
        payload = self.load(name)
        if payload is None:
            return None
        try:
            return global_from_api(payload)
        except DecodeError as e:
            logger.warning("cache_entry_undecodable", name=name, error=str(e))
            return None
