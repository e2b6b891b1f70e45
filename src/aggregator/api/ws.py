"""Live price push over WebSocket.

Clients connect to /ws/prices and receive one message per live price tick:
    {"type": "prices", "prices": {"btc": "65000.5", ...}}
A new client first receives a "snapshot" message with every price seen so far.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

log = structlog.get_logger(__name__)

router = APIRouter()


def _message(kind: str, prices: dict[str, Decimal]) -> dict:
    return {"type": kind, "prices": {symbol: str(price) for symbol, price in prices.items()}}


class PriceHub:
    """Fans live price ticks out to WebSocket clients."""

    def __init__(self) -> None:
        self.connections: list[WebSocket] = []
        self._latest: dict[str, Decimal] = {}
        self._pending: set[asyncio.Task] = set()  # type: ignore[type-arg]

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        if self._latest:
            await ws.send_json(_message("snapshot", self._latest))
        self.connections.append(ws)
        log.info("price_ws_connected", clients=len(self.connections))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.connections:
            self.connections.remove(ws)
        log.info("price_ws_disconnected", clients=len(self.connections))

    def publish(self, prices: dict[str, Decimal]) -> None:
        """LivePricePoller listener. Records the tick and schedules a broadcast."""
        self._latest.update(prices)
        if not self.connections:
            return
        task = asyncio.create_task(self.broadcast(prices))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def broadcast(self, prices: dict[str, Decimal]) -> None:
        """Send one tick to all clients concurrently; clients whose send fails are dropped."""
        targets = list(self.connections)
        message = _message("prices", prices)
        results = await asyncio.gather(
            *(ws.send_json(message) for ws in targets), return_exceptions=True
        )
        for ws, result in zip(targets, results):
            if isinstance(result, Exception):
                self.disconnect(ws)
                log.warning("price_ws_send_failed", error=str(result))


@router.websocket("/ws/prices")
async def prices_endpoint(websocket: WebSocket) -> None:
    hub: PriceHub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        # Inbound messages are ignored; reading detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)
