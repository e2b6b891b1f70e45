"""JSON HTTP surface over the aggregation service."""

from aggregator.api.app import create_app

__all__ = ["create_app"]
