"""Live spot price poller.

Fires a tick immediately and then every `interval` seconds. Each tick is one
call to the price source for the whole symbol batch. Ticks are not coalesced:
a slow response may still be in flight when the next tick starts, and each
publishes whatever it gets when it completes.

A failed tick is logged and publishes nothing, so consumers keep their last
known prices until a later tick succeeds.
"""

import asyncio
from collections.abc import Callable
from decimal import Decimal
from typing import Protocol

from aggregator.logging import get_logger

logger = get_logger(__name__)

PriceListener = Callable[[dict[str, Decimal]], None]


class SpotPriceSource(Protocol):
    async def fetch_spot_prices(self, symbols: list[str]) -> dict[str, Decimal]: ...


class LivePricePoller:
    """Polls a SpotPriceSource and publishes {lowercase symbol: price} to listeners.

    Args:
        source: Anything with an async fetch_spot_prices(symbols).
        interval: Default seconds between ticks.
    """

    def __init__(self, source: SpotPriceSource, interval: float = 5.0) -> None:
        self._source = source
        self._interval = interval
        self._symbols: list[str] = []
        self._listeners: list[PriceListener] = []
        self._latest: dict[str, Decimal] = {}
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._inflight: set[asyncio.Task] = set()  # type: ignore[type-arg]

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def latest_prices(self) -> dict[str, Decimal]:
        return dict(self._latest)

    def subscribe(self, listener: PriceListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self, symbols: list[str], interval: float | None = None) -> None:
        """Start polling symbols, replacing any batch already being polled."""
        if self._running:
            await self.stop()
        self._symbols = [s.lower() for s in symbols]
        if interval is not None:
            self._interval = interval
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("live_price_poller_started", symbols=len(self._symbols), interval=self._interval)

    async def stop(self) -> None:
        self._running = False
        tasks = [t for t in (self._task, *self._inflight) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._inflight.clear()
        logger.info("live_price_poller_stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            tick = asyncio.create_task(self.tick(list(self._symbols)))
            self._inflight.add(tick)
            tick.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self._interval)

    async def tick(self, symbols: list[str]) -> None:
        """Fetch once and publish. Failures are logged and swallowed."""
        if not symbols:
            return
        try:
            prices = await self._source.fetch_spot_prices(symbols)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("live_price_tick_failed", symbols=len(symbols), error=str(e))
            return

        if not prices:
            return
        self._latest.update(prices)
        self._publish(prices)

    def _publish(self, prices: dict[str, Decimal]) -> None:
        for listener in list(self._listeners):
            try:
                listener(dict(prices))
            except Exception:
                logger.warning("live_price_listener_error", exc_info=True)
