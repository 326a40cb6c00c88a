"""Simulated (paper) execution against an agent's internal ledger."""
from decimal import Decimal
from typing import Dict, List, Optional

from arena.core.config import arena_config
from arena.core.models import AgentState, Order, Position, TradingMode
from arena.execution.base import ExecutionEngine
from arena.risk.cooldown import CooldownTracker
from arena.risk.validation import ValidatedDecision


class SimulatedExecutor(ExecutionEngine):
    """Executes decisions as pure ledger arithmetic.

    Opening debits the margin from balance and records a position at the
    current market price. Closing realizes PnL at the current market price
    and charges ``fee_pct`` on the notional of both legs.

    Attributes:
        fee_pct: Fee per leg as a fraction of notional (0.0005 = 0.05%)
    """

    mode = TradingMode.SIMULATED

    def __init__(
        self,
        cooldowns: Optional[CooldownTracker] = None,
        fee_pct: Optional[Decimal] = None,
    ):
        super().__init__(cooldowns)
        self.fee_pct = fee_pct if fee_pct is not None else arena_config.simulated_fee_pct

    async def open_position(
        self,
        agent: AgentState,
        item: ValidatedDecision,
        prices: Dict[str, Decimal],
    ) -> List[str]:
        decision = item.decision
        action = decision.action.value
        price = prices.get(decision.symbol)
        size = decision.size or Decimal("0")

        if price is None or price <= 0:
            return [f"REJECTED {action} {decision.symbol}: No market price available."]
        if size > agent.portfolio.balance:
            return [
                f"REJECTED {action} {decision.symbol}: Margin ${size:.2f} exceeds "
                f"available balance of ${agent.portfolio.balance:.2f}."
            ]

        position = Position(
            symbol=decision.symbol,
            side=decision.position_side,
            entry_price=price,
            size=size,
            leverage=item.leverage,
            stop_loss=decision.stop_loss,
            take_profit=decision.take_profit,
        )
        agent.portfolio.balance -= size
        agent.portfolio.positions.append(position)
        agent.orders.append(Order(
            symbol=position.symbol,
            side=position.side,
            entry_price=price,
            size=size,
            leverage=position.leverage,
            position_id=position.id,
            timestamp=position.opened_at,
        ))

        self.logger.info(
            "simulated.position_opened",
            agent_id=agent.id,
            position_id=position.id,
            symbol=position.symbol,
            side=position.side.value,
            size=str(size),
            leverage=position.leverage,
            entry_price=str(price),
        )
        return [f"SUCCESS: Opened {action} {decision.symbol} position."]

    async def _close(
        self,
        agent: AgentState,
        position_id: Optional[str],
        prices: Dict[str, Decimal],
    ) -> List[str]:
        position = agent.portfolio.find_position(position_id) if position_id else None
        if position is None:
            return [self.already_gone_note(position_id)]

        exit_price = prices.get(position.symbol) or position.entry_price
        gross_pnl = position.calculate_pnl(exit_price)
        fee_open = position.notional * self.fee_pct
        fee_close = position.quantity * exit_price * self.fee_pct
        fees = fee_open + fee_close
        net_pnl = gross_pnl - fees

        agent.portfolio.balance += position.size + net_pnl
        agent.portfolio.positions = [p for p in agent.portfolio.positions if p.id != position.id]
        agent.orders.append(Order(
            symbol=position.symbol,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=exit_price,
            size=position.size,
            leverage=position.leverage,
            pnl=net_pnl,
            fee=fees,
            position_id=position.id,
        ))
        agent.record_closed_trade(net_pnl)
        self.cooldowns.start(agent, position.symbol)

        self.logger.info(
            "simulated.position_closed",
            agent_id=agent.id,
            position_id=position.id,
            symbol=position.symbol,
            exit_price=str(exit_price),
            pnl=str(net_pnl),
            fees=str(fees),
        )
        return [
            f"SUCCESS: Closed {position.symbol} position with PnL ${net_pnl:.2f} "
            f"(fees ${fees:.2f}). Cooldown initiated."
        ]
