"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseSettings):
    """Upstream market data provider endpoints."""

    model_config = SettingsConfigDict(env_prefix="PROVIDER_")

    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: SecretStr = SecretStr("")  # optional demo key
    coinbase_base_url: str = "https://api.coinbase.com/v2"
    request_timeout: float = 10.0
    vs_currency: str = "usd"
    per_page: int = 20


class RetrySettings(BaseSettings):
    """Backoff policy shared by the provider clients.

    Delay before retry n (1-based) is base_delay * 2**n.
    """

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = 2
    base_delay: float = 0.5
    batch_max_attempts: int = 3  # fetch_coins(ids)
    batch_base_delay: float = 0.5


class PollingSettings(BaseSettings):
    """Timer intervals, in seconds, for the independent refresh loops."""

    model_config = SettingsConfigDict(env_prefix="POLLING_")

    full_refresh_interval: float = 30.0
    watchlist_interval: float = 15.0
    live_price_interval: float = 5.0
    live_price_source: Literal["coingecko", "coinbase"] = "coingecko"


class CacheSettings(BaseSettings):
    """On-disk cache of the last successful provider payloads."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    directory: str = "data/cache"


class FavoritesSettings(BaseSettings):
    """Favorite coin persistence."""

    model_config = SettingsConfigDict(env_prefix="FAVORITES_")

    db_path: str = "data/favorites.db"


class ReachabilitySettings(BaseSettings):
    """Network reachability probing.

    The monitor opens a TCP connection to probe_host:probe_port every
    interval seconds; a failed connect marks the host offline.
    """

    model_config = SettingsConfigDict(env_prefix="REACHABILITY_")

    enabled: bool = True
    probe_host: str = "api.coingecko.com"
    probe_port: int = 443
    interval: float = 10.0
    timeout: float = 3.0
    assume_online: bool = True


class AggregationSettings(BaseSettings):
    """Market aggregation behaviour.

    refresh_policy decides what happens when a manual refresh arrives while
    an automatic one is in flight: "concurrent" lets both run to completion,
    "exclusive" skips the later one.
    """

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    slice_size: int = 10
    refresh_policy: Literal["concurrent", "exclusive"] = "concurrent"
    reload_attempts: int = 3
    reload_delay: float = 2.0
    watchlist_attempts: int = 3
    watchlist_retry_delay: float = 1.0
    search_debounce: float = 0.3


class ApiSettings(BaseSettings):
    """HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    favorites: FavoritesSettings = Field(default_factory=FavoritesSettings)
    reachability: ReachabilitySettings = Field(default_factory=ReachabilitySettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
