"""Binance daily kline sparklines via ccxt async."""

from decimal import Decimal

import ccxt.async_support as ccxt_async

from aggregator.logging import get_logger

logger = get_logger(__name__)


class BinanceSparklineClient:
    """Builds a 7-point sparkline from the last seven 1d candle closes.

    Errors of any kind yield an empty sparkline; the caller just renders
    nothing for that coin.
    """

    def __init__(self, exchange: ccxt_async.Exchange | None = None) -> None:
        self._exchange = exchange or ccxt_async.binance({"enableRateLimit": True})

    async def fetch_sparkline(self, symbol: str, days: int = 7) -> list[Decimal]:
        pair = f"{symbol.upper()}/USDT"
        try:
            candles = await self._exchange.fetch_ohlcv(pair, timeframe="1d", limit=days)
        except ccxt_async.BaseError as e:
            logger.warning("binance_sparkline_failed", pair=pair, error=str(e))
            return []

        # [timestamp, open, high, low, close, volume]
        return [Decimal(str(c[4])) for c in candles if c[4] is not None]

    async def close(self) -> None:
        """Clean up ccxt async resources."""
        await self._exchange.close()
