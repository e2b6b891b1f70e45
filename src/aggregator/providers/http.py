"""Thin httpx wrapper that maps transport outcomes onto aggregator errors.

Every provider client goes through ProviderHttp.get(), so the status code
rules live in one place:
- 2xx        -> raw body bytes
- 429        -> RateLimitedError (retryable)
- other      -> BadServerResponseError(status) (not retryable)
- timeout / dropped connection -> ConnectivityError (retryable)
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from aggregator.exceptions import (
    BadServerResponseError,
    ConnectivityError,
    DecodeError,
    RateLimitedError,
)
from aggregator.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (RateLimitedError, ConnectivityError)


class ProviderHttp:
    """Async GET client bound to one provider base URL.

    Args:
        base_url: Provider root, e.g. "https://api.coingecko.com/api/v3".
        timeout: Per-request timeout in seconds.
        default_params: Query parameters appended to every request.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        default_params: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._default_params = default_params or {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json", "User-Agent": "MarketAggregator/1.0"},
            transport=transport,
        )

    async def get(self, path: str, params: dict[str, Any] | None = None) -> bytes:
        """Perform a GET and return the raw body of a 2xx response."""
        merged = {**self._default_params, **(params or {})}
        try:
            response = await self._client.get(path, params=merged)
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"Request to {path} timed out") from e
        except httpx.TransportError as e:
            raise ConnectivityError(f"Connection to {path} failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError()
        if not 200 <= response.status_code < 300:
            raise BadServerResponseError(response.status_code)
        return response.content

    async def close(self) -> None:
        await self._client.aclose()


def decode_json(raw: bytes) -> Any:
    """Parse a response body, mapping malformed JSON to DecodeError."""
    try:
        return json.loads(raw)
    except ValueError as e:
        raise DecodeError(f"Malformed JSON payload: {e}") from e


async def fetch_with_retry(
    fetch_fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay: float,
    operation: str,
) -> T:
    """Execute fetch_fn with exponential backoff on retryable errors.

    Attempts run strictly one after another. Before retry n (1-based) the
    call sleeps base_delay * 2**n. Rate limits and connectivity failures are
    retried; anything else (bad status, decode failure, cancellation)
    propagates immediately. The last retryable error is re-raised once the
    attempt ceiling is reached.

    Raises:
        ValueError: If max_attempts is less than 1.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await fetch_fn()
        except RETRYABLE_ERRORS as e:
            if attempt == max_attempts:
                logger.warning(
                    "fetch_retries_exhausted",
                    operation=operation,
                    attempts=max_attempts,
                    error=str(e),
                )
                raise

            delay = base_delay * (2**attempt)
            logger.warning(
                "rate_limit_exceeded" if isinstance(e, RateLimitedError) else "fetch_retry",
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
