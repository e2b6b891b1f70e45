"""Coinbase spot price client.

Only pairs on a fixed allow-list are requested; anything else returns None
without touching the network unless the caller opts in with
allow_unlisted_pairs. Rejected pairs are logged once each.
"""

import asyncio
from decimal import Decimal, InvalidOperation

from aggregator.exceptions import AggregatorError, BadServerResponseError
from aggregator.logging import get_logger
from aggregator.providers.http import ProviderHttp, decode_json

logger = get_logger(__name__)

VALID_PAIRS: frozenset[str] = frozenset({
    "BTC-USD", "ETH-USD", "USDT-USD", "XRP-USD", "BNB-USD",
    "USDC-USD", "SOL-USD", "DOGE-USD", "ADA-USD", "TRX-USD",
    "WBTC-USD", "WETH-USD", "WEETH-USD", "UNI-USD", "DAI-USD",
    "APT-USD", "TON-USD", "LINK-USD", "XLM-USD", "WSTETH-USD",
    "AVAX-USD", "SUI-USD", "SHIB-USD", "HBAR-USD", "LTC-USD",
    "OM-USD", "DOT-USD", "BCH-USD", "SUSDE-USD", "AAVE-USD",
    "ATOM-USD", "CRO-USD", "NEAR-USD", "PEPE-USD", "OKB-USD",
    "CBBTC-USD", "GT-USD",
})


class CoinbaseSpotClient:
    """Spot prices from GET /prices/{BASE}-{FIAT}/spot.

    Args:
        http: ProviderHttp bound to the Coinbase v2 base URL.
        retry_delay: Seconds per attempt number slept between retries
            (attempt 1 sleeps retry_delay, attempt 2 sleeps 2 * retry_delay).
    """

    def __init__(self, http: ProviderHttp, retry_delay: float = 2.0) -> None:
        self._http = http
        self._retry_delay = retry_delay
        self._invalid_pairs_logged: set[str] = set()

    async def fetch_spot_price(
        self,
        coin: str = "BTC",
        fiat: str = "USD",
        max_retries: int = 3,
        allow_unlisted_pairs: bool = False,
    ) -> Decimal | None:
        """Return the spot price, or None if the pair is unsupported or unavailable."""
        pair = f"{coin.upper()}-{fiat.upper()}"
        if not allow_unlisted_pairs and pair not in VALID_PAIRS:
            if pair not in self._invalid_pairs_logged:
                self._invalid_pairs_logged.add(pair)
                logger.info("coinbase_pair_not_supported", pair=pair)
            return None

        for attempt in range(1, max_retries + 1):
            try:
                raw = await self._http.get(f"/prices/{pair}/spot")
                return self._parse_amount(decode_json(raw))
            except BadServerResponseError as e:
                if e.status_code in (400, 404):
                    return None
                error: AggregatorError = e
            except AggregatorError as e:
                error = e

            if attempt < max_retries:
                logger.debug("coinbase_spot_retry", pair=pair, attempt=attempt, error=str(error))
                await asyncio.sleep(self._retry_delay * attempt)
            else:
                logger.warning("coinbase_spot_failed", pair=pair, attempts=max_retries, error=str(error))
        return None

    async def fetch_spot_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Concurrent single-pair lookups keyed by lowercase symbol; misses are omitted."""
        results = await asyncio.gather(*(self.fetch_spot_price(s) for s in symbols))
        return {
            symbol.lower(): price
            for symbol, price in zip(symbols, results)
            if price is not None
        }

    @staticmethod
    def _parse_amount(payload: object) -> Decimal | None:
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            return None
        amount = payload["data"].get("amount")
        if amount is None:
            return None
        try:
            return Decimal(str(amount))
        except InvalidOperation:
            return None
