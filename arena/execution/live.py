"""Live execution on the perpetual-futures venue.

Opening a position is staged and fail-soft:

a. Reject when available balance is below the minimum trade size
b. Clamp the size to available balance
c. Reject when the clamped size is below the minimum
d. Set leverage for the symbol
e. Size the order and truncate the quantity to the symbol's precision
f. Abort this decision when the quantity truncates to zero
g. Submit the opening market order
h. Submit stop-loss and take-profit as independent reduce-only orders

A failed protective order never unwinds the opening order.
"""
import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

from arena.core.config import arena_config
from arena.core.models import (
    AgentState,
    Decision,
    TradingMode,
    VenueOrderRequest,
    VenueOrderType,
)
from arena.exchange.venue_client import VenueClient, opening_side, opposite_side
from arena.execution.base import ExecutionEngine
from arena.execution.precision import PrecisionAdapter
from arena.risk.cooldown import CooldownTracker
from arena.risk.validation import ValidatedDecision


class LiveExecutor(ExecutionEngine):
    """Executes decisions as venue orders on the agent's own account.

    Attributes:
        venue: Venue client
        precision: Quantity precision adapter
        minimum_size: Minimum margin in USD
    """

    mode = TradingMode.LIVE

    def __init__(
        self,
        venue: VenueClient,
        precision: PrecisionAdapter,
        cooldowns: Optional[CooldownTracker] = None,
        minimum_size: Optional[Decimal] = None,
    ):
        super().__init__(cooldowns)
        self.venue = venue
        self.precision = precision
        self.minimum_size = minimum_size if minimum_size is not None else arena_config.minimum_trade_size_usd

    @staticmethod
    def already_gone_note(position_id: Optional[str]) -> str:
        return f"NOTE: Attempted to close {position_id}, but position no longer exists on exchange."

    async def open_position(
        self,
        agent: AgentState,
        item: ValidatedDecision,
        prices: Dict[str, Decimal],
    ) -> List[str]:
        decision = item.decision
        action = decision.action.value
        symbol = decision.symbol
        price = prices.get(symbol)
        if price is None or price <= 0:
            return [f"REJECTED {action} {symbol}: No market price available."]

        notes: List[str] = []
        available = agent.portfolio.balance
        size = decision.size or Decimal("0")

        # Stage a
        if available < self.minimum_size:
            return [
                f"REJECTED {action} {symbol}: Available balance ${available:.2f} "
                f"is below the minimum trade size of ${self.minimum_size}."
            ]

        # Stage b
        if size > available:
            notes.append(
                f"NOTE: Trade size for {symbol} adjusted from ${size:.2f} "
                f"to fit available margin of ${available:.2f}."
            )
            size = available

        # Stage c
        if size < self.minimum_size:
            notes.append(
                f"REJECTED {action} {symbol}: Adjusted trade size ${size:.2f} "
                f"is below minimum of ${self.minimum_size}."
            )
            return notes

        # Stage e / f
        quantity = self.precision.adjust(symbol, size * item.leverage / price)
        side = decision.position_side
        try:
            # Stage d
            await self.venue.set_leverage(symbol, item.leverage, agent.id)
            if quantity <= 0:
                notes.append(f"Execution Warning: Calculated quantity for {symbol} is 0.")
                return notes

            # Stage g
            await self.venue.place_order(
                VenueOrderRequest(symbol=symbol, side=opening_side(side), quantity=quantity),
                agent.id,
            )
        except Exception as e:
            self.logger.error("live.open_failed", agent_id=agent.id, symbol=symbol, error=str(e))
            notes.append(f"Execution Error: {e}")
            return notes

        agent.portfolio.balance -= size
        notes.append(f"SUCCESS: Opened {action} {symbol} position.")
        self.logger.info(
            "live.position_opened",
            agent_id=agent.id,
            symbol=symbol,
            side=side.value,
            size=str(size),
            leverage=item.leverage,
            quantity=str(quantity),
        )

        # Stage h
        notes.extend(await self._place_protective_orders(agent, decision, quantity))
        return notes

    async def _place_protective_orders(
        self,
        agent: AgentState,
        decision: Decision,
        quantity: Decimal,
    ) -> List[str]:
        legs = []
        if decision.stop_loss:
            legs.append(("Stop-Loss", VenueOrderType.STOP_MARKET, decision.stop_loss))
        if decision.take_profit:
            legs.append(("Take-Profit", VenueOrderType.TAKE_PROFIT_MARKET, decision.take_profit))
        if not legs:
            return []

        results = await asyncio.gather(
            *(
                self._place_leg(agent, decision, order_type, trigger, quantity)
                for _, order_type, trigger in legs
            ),
            return_exceptions=True,
        )

        notes = []
        for (label, _, _), result in zip(legs, results):
            if isinstance(result, Exception):
                self.logger.warning(
                    "live.protective_order_failed",
                    agent_id=agent.id,
                    symbol=decision.symbol,
                    leg=label,
                    error=str(result),
                )
                notes.append(f"ERROR: Failed to place {label} order for {decision.symbol}: {result}")
            else:
                notes.append(f"SUCCESS: {label} order placed for {decision.symbol}.")
        return notes

    async def _place_leg(
        self,
        agent: AgentState,
        decision: Decision,
        order_type: VenueOrderType,
        trigger: Decimal,
        quantity: Decimal,
    ):
        request = VenueOrderRequest(
            symbol=decision.symbol,
            side=opposite_side(decision.position_side),
            type=order_type,
            quantity=quantity,
            stop_price=trigger,
            reduce_only=True,
        )
        return await self.venue.place_order(request, agent.id)

    async def _close(
        self,
        agent: AgentState,
        position_id: Optional[str],
        prices: Dict[str, Decimal],
    ) -> List[str]:
        position = agent.portfolio.find_position(position_id) if position_id else None
        if position is None:
            return [self.already_gone_note(position_id)]

        quantity = self.precision.adjust(position.symbol, self.closing_quantity(position))
        if quantity <= 0:
            return [f"Execution Warning: Calculated quantity for {position.symbol} is 0."]

        await self.venue.place_order(
            VenueOrderRequest(
                symbol=position.symbol,
                side=opposite_side(position.side),
                quantity=quantity,
                reduce_only=True,
            ),
            agent.id,
        )
        self.cooldowns.start(agent, position.symbol)
        self.logger.info(
            "live.position_closed",
            agent_id=agent.id,
            position_id=position.id,
            symbol=position.symbol,
            quantity=str(quantity),
        )
        return [f"SUCCESS: Closed {position.symbol} position. Cooldown initiated."]
