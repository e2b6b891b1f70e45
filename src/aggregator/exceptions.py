"""Custom exceptions for the market data aggregator.

Provider clients raise these so the aggregation layer can tell retryable
transport problems apart from permanent failures without importing httpx.
"""


class AggregatorError(Exception):
    """Base exception for all aggregator errors."""


class RateLimitedError(AggregatorError):
    """Raised when a provider answers HTTP 429."""

    def __init__(self, message: str = "Rate limit exceeded. Please try again later.") -> None:
        super().__init__(message)


class BadServerResponseError(AggregatorError):
    """Raised on a non-2xx, non-429 provider response. Never retried."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"Unexpected server response (code {status_code}).")


class DecodeError(AggregatorError):
    """Raised when a provider payload cannot be decoded. Never retried."""


class ConnectivityError(AggregatorError):
    """Raised on timeouts and dropped connections. Retried with backoff."""


class NotConnectedError(ConnectivityError):
    """Raised when the host is offline and no cached data can be served."""

    def __init__(self, message: str = "The Internet connection appears to be offline.") -> None:
        super().__init__(message)
