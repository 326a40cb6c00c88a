"""Portfolio reconciliation for simulated and live agents.

Simulated agents are recomputed from the latest prices. Live agents are
replaced wholesale by the venue's account snapshot and trade history, the
venue being the only source of truth for them.

Callers must hold the agent's lock.
"""
import asyncio
from decimal import Decimal
from typing import List, Optional

import structlog

from arena.core.config import arena_config
from arena.core.errors import ReconciliationTimeout
from arena.core.models import AgentState, Market, Order, ValuePoint, price_map
from arena.exchange.venue_client import VenueClient

logger = structlog.get_logger(__name__)


class SimulatedReconciler:
    """Marks simulated positions to market.

    Attributes:
        value_history_limit: Bound on the agent's value history
    """

    def __init__(self, value_history_limit: Optional[int] = None):
        self.value_history_limit = value_history_limit or arena_config.value_history_limit

    def refresh(self, agent: AgentState, markets: List[Market]) -> None:
        """Recompute unrealized PnL and total value.

        Symbols missing from the snapshot are marked at their entry price.
        Calling this repeatedly at unchanged prices yields the same state.
        """
        prices = price_map(markets)
        unrealized = Decimal("0")
        for position in agent.portfolio.positions:
            price = prices.get(position.symbol) or position.entry_price
            position.pnl = position.calculate_pnl(price)
            unrealized += position.pnl

        portfolio = agent.portfolio
        portfolio.pnl = unrealized
        portfolio.total_value = portfolio.balance + portfolio.margin_used + unrealized
        agent.append_value_point(ValuePoint(value=portfolio.total_value), self.value_history_limit)


class LiveReconciler:
    """Replaces a live agent's ledger with the venue's view.

    Attributes:
        venue: Venue client
        symbols: Symbols whose trade history is fetched
        timeout: Time budget for one sync in seconds
        value_history_limit: Bound on the agent's value history
    """

    def __init__(
        self,
        venue: VenueClient,
        symbols: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        value_history_limit: Optional[int] = None,
    ):
        self.venue = venue
        self.symbols = symbols or arena_config.symbols
        self.timeout = timeout or arena_config.live_sync_timeout
        self.value_history_limit = value_history_limit or arena_config.value_history_limit

    async def _fetch(self, agent: AgentState):
        portfolio = await self.venue.get_account_state(agent.id)
        orders = await self.venue.get_trade_history(agent.id, self.symbols)
        return portfolio, orders

    async def sync(self, agent: AgentState, timeout: Optional[float] = None) -> bool:
        """Pull the venue snapshot into ``agent``.

        On timeout or failure the last known state is kept and the problem
        is recorded on ``agent.last_sync_error``.

        Args:
            agent: Live agent to sync
            timeout: Overrides the configured time budget

        Returns:
            True if the agent now reflects the venue
        """
        budget = timeout or self.timeout
        try:
            try:
                portfolio, orders = await asyncio.wait_for(self._fetch(agent), timeout=budget)
            except asyncio.TimeoutError as e:
                raise ReconciliationTimeout(f"Venue sync exceeded {budget:.1f}s") from e
        except Exception as e:
            agent.last_sync_error = str(e)
            logger.warning(
                "reconciliation.sync_failed",
                agent_id=agent.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        agent.portfolio = portfolio
        agent.orders = orders
        self._derive_stats(agent, orders)
        if agent.initial_balance is None:
            agent.initial_balance = portfolio.total_value
            logger.info(
                "reconciliation.initial_balance_captured",
                agent_id=agent.id,
                initial_balance=str(portfolio.total_value),
            )
        agent.last_sync_error = None
        agent.append_value_point(ValuePoint(value=portfolio.total_value), self.value_history_limit)

        logger.debug(
            "reconciliation.synced",
            agent_id=agent.id,
            total_value=str(portfolio.total_value),
            positions=len(portfolio.positions),
            orders=len(orders),
        )
        return True

    @staticmethod
    def _derive_stats(agent: AgentState, orders: List[Order]) -> None:
        closed = [o for o in orders if not o.is_open]
        wins = sum(1 for o in closed if o.pnl > 0)
        agent.realized_pnl = sum((o.pnl for o in orders), Decimal("0"))
        agent.trade_count = len(closed)
        agent.win_rate = wins / len(closed) if closed else 0.0
