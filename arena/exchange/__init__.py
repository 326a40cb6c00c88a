"""Venue integration module for the Trading Arena."""

from arena.exchange.market_data import MarketDataFeed
from arena.exchange.venue_client import (
    AgentCredentials,
    RetryConfig,
    VenueClient,
    opening_side,
    opposite_side,
    precision_digits,
    with_retry,
)

__all__ = [
    "AgentCredentials",
    "MarketDataFeed",
    "RetryConfig",
    "VenueClient",
    "opening_side",
    "opposite_side",
    "precision_digits",
    "with_retry",
]
