"""Market snapshot feed for the Trading Arena."""
from typing import List, Optional

import structlog

from arena.core.config import arena_config
from arena.core.models import Market
from arena.exchange.venue_client import VenueClient

logger = structlog.get_logger(__name__)


class MarketDataFeed:
    """Fetches the latest price snapshot for the traded universe.

    Attributes:
        venue: Venue client used for public tickers
        symbols: Venue symbol ids to fetch
        last_snapshot: Most recent successful snapshot
    """

    def __init__(self, venue: VenueClient, symbols: Optional[List[str]] = None):
        self.venue = venue
        self.symbols = symbols or arena_config.symbols
        self.last_snapshot: List[Market] = []

    async def fetch(self) -> List[Market]:
        """Return the latest snapshot.

        On failure the previous snapshot is returned so refresh keeps
        working off the last known prices.
        """
        try:
            markets = await self.venue.fetch_markets(self.symbols)
        except Exception as e:
            logger.warning(
                "market_data.fetch_failed",
                error=str(e),
                cached=len(self.last_snapshot),
            )
            return list(self.last_snapshot)

        self.last_snapshot = markets
        logger.debug("market_data.fetched", count=len(markets))
        return markets
