"""Market data layer -- live price polling, slice derivation and aggregation."""

from aggregator.market_data.aggregation import MarketAggregationService
from aggregator.market_data.filtering import MarketSlices, derive_slices, filter_and_sort
from aggregator.market_data.live_price import LivePricePoller

__all__ = [
    "LivePricePoller",
    "MarketAggregationService",
    "MarketSlices",
    "derive_slices",
    "filter_and_sort",
]
