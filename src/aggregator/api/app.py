"""FastAPI application factory for the aggregator's JSON API and price WebSocket."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from aggregator.api import routes, ws
from aggregator.api.ws import PriceHub


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  main.py uses it to start and stop the aggregation components.
                  Route handlers expect app.state.aggregation and
                  app.state.reachability to be set.

    Returns:
        Configured FastAPI application with a PriceHub on app.state.hub.
    """
    app = FastAPI(title="Market Data Aggregator", lifespan=lifespan)

    app.state.hub = PriceHub()

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        service = request.app.state.aggregation
        reachability = request.app.state.reachability
        return JSONResponse(content={
            "status": service.state.status.value,
            "online": reachability.is_online,
            "coins": len(service.all_coins),
            "refreshing": service.is_refreshing,
        })

    app.include_router(routes.router, prefix="/api")
    app.include_router(ws.router)
    return app
