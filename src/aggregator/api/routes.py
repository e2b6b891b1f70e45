"""JSON API endpoints over the aggregation service."""

from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from aggregator.market_data.aggregation import MarketAggregationService
from aggregator.models import Coin, MarketSegment, SortDirection, SortField

log = structlog.get_logger(__name__)

router = APIRouter()


class ViewUpdate(BaseModel):
    """Partial update of the stored filter/sort state."""

    segment: MarketSegment | None = None
    search: str | None = None
    sort_field: SortField | None = None
    sort_direction: SortDirection | None = None


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_str(item) for item in obj]
    return obj


def _coins(coins: list[Coin]) -> list[dict]:
    return [_decimal_to_str(asdict(c)) for c in coins]


def _service(request: Request) -> MarketAggregationService:
    return request.app.state.aggregation


def _view_state(service: MarketAggregationService) -> dict:
    return {
        "segment": service.segment.value,
        "search": service.search_text,
        "sort_field": service.sort_field.value,
        "sort_direction": service.sort_direction.value,
    }


@router.get("/coins")
async def get_coins(
    request: Request,
    segment: MarketSegment | None = None,
    search: str | None = None,
    sort: SortField | None = None,
    direction: SortDirection | None = None,
) -> JSONResponse:
    """Filtered, sorted coin list. Query parameters override stored state for this call only."""
    service = _service(request)
    if segment is None and search is None and sort is None and direction is None:
        coins = service.filtered_coins
    else:
        coins = service.view(segment, search, sort, direction)

    state = service.state
    return JSONResponse(content={
        "status": state.status.value,
        "error": state.error,
        "coins": _coins(coins),
    })


@router.get("/slices")
async def get_slices(request: Request) -> JSONResponse:
    service = _service(request)
    return JSONResponse(content={
        "trending": _coins(service.trending_coins),
        "gainers": _coins(service.top_gainers),
        "losers": _coins(service.top_losers),
    })


@router.get("/watchlist")
async def get_watchlist(request: Request) -> JSONResponse:
    service = _service(request)
    return JSONResponse(content={
        "favorite_ids": sorted(service.favorite_ids),
        "coins": _coins(service.watchlist_coins),
    })


@router.get("/lookup")
async def lookup_coins(request: Request, ids: str = Query(..., min_length=1)) -> JSONResponse:
    """Ad-hoc market data for a comma-separated list of ids or symbols."""
    wanted = [i.strip() for i in ids.split(",") if i.strip()]
    coins = await _service(request).fetch_coins(wanted)
    return JSONResponse(content=_coins(coins))


@router.get("/global")
async def get_global(request: Request) -> JSONResponse:
    service = _service(request)
    snapshot = service.global_snapshot
    if snapshot is None:
        raise HTTPException(status_code=503, detail="Global market data not loaded yet")
    return JSONResponse(content={
        "snapshot": _decimal_to_str(asdict(snapshot)),
        "stats": [asdict(s) for s in service.market_stats()],
    })


@router.get("/coins/{coin_id}/sparkline")
async def get_sparkline(request: Request, coin_id: str) -> JSONResponse:
    prices = await _service(request).sparkline_for(coin_id)
    if prices is None:
        raise HTTPException(status_code=404, detail=f"Unknown coin {coin_id}")
    return JSONResponse(content={"coin_id": coin_id, "prices": _decimal_to_str(prices)})


@router.get("/view")
async def get_view(request: Request) -> JSONResponse:
    return JSONResponse(content=_view_state(_service(request)))


@router.put("/view")
async def update_view(request: Request, update: ViewUpdate) -> JSONResponse:
    """Update stored filter/sort state; the stored view is recomputed immediately."""
    service = _service(request)
    if update.segment is not None:
        service.set_segment(update.segment)
    if update.sort_field is not None or update.sort_direction is not None:
        service.set_sort(
            update.sort_field or service.sort_field,
            update.sort_direction or service.sort_direction,
        )
    if update.search is not None:
        service.set_search_text(update.search, debounce=False)
    return JSONResponse(content=_view_state(service))


@router.post("/view/sort/{field}")
async def toggle_sort(request: Request, field: SortField) -> JSONResponse:
    service = _service(request)
    service.toggle_sort(field)
    return JSONResponse(content=_view_state(service))


@router.post("/refresh")
async def refresh(request: Request) -> JSONResponse:
    """Manual refresh. Runs alongside any automatic refresh unless the policy is exclusive."""
    service = _service(request)
    await service.refresh_all_data(manual=True)
    log.info("manual_refresh_completed", status=service.state.status.value)
    return JSONResponse(content={
        "status": service.state.status.value,
        "error": service.state.error,
        "count": len(service.all_coins),
    })


@router.post("/favorites/{coin_id}")
async def toggle_favorite(request: Request, coin_id: str) -> JSONResponse:
    now_favorite = await _service(request).toggle_favorite(coin_id)
    return JSONResponse(content={"coin_id": coin_id, "favorite": now_favorite})


@router.delete("/favorites/{coin_id}")
async def remove_favorite(request: Request, coin_id: str) -> JSONResponse:
    await _service(request).remove_favorite(coin_id)
    return JSONResponse(content={"coin_id": coin_id, "favorite": False})
