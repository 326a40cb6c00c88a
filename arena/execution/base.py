"""Base class for the Trading Arena execution engines."""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from arena.core.models import AgentState, DecisionAction, Market, Position, TradingMode, price_map
from arena.core.errors import PositionNotFoundError
from arena.risk.cooldown import CooldownTracker
from arena.risk.validation import ValidatedDecision

logger = structlog.get_logger(__name__)


class ExecutionEngine(ABC):
    """
    Abstract base class for simulated and live execution.

    An engine applies validated decisions to one agent and returns outcome
    notes. Failures are isolated per decision:
    - A position that is already gone becomes a benign note
    - Any other error becomes an ``Execution Error`` note
    - Processing always continues with the next decision

    Subclasses implement:
    - open_position(): Apply one LONG/SHORT decision
    - _close(): Close one position by id

    Callers must hold the agent's lock.
    """

    mode: TradingMode

    def __init__(self, cooldowns: Optional[CooldownTracker] = None):
        self.cooldowns = cooldowns or CooldownTracker()
        self.logger = logger.bind(executor=self.__class__.__name__)

    async def execute(
        self,
        agent: AgentState,
        accepted: List[ValidatedDecision],
        markets: List[Market],
    ) -> List[str]:
        """Apply accepted decisions in order.

        Args:
            agent: Agent to trade for
            accepted: Output of the validation pipeline
            markets: Latest market snapshot

        Returns:
            Outcome notes in decision order
        """
        prices = price_map(markets)
        notes: List[str] = []

        for item in accepted:
            decision = item.decision
            if decision.is_directional:
                notes.extend(await self._guarded(agent, None, self.open_position(agent, item, prices)))
            elif decision.action == DecisionAction.CLOSE:
                position_id = decision.close_position_id
                if not position_id and decision.symbol:
                    position = agent.portfolio.find_by_symbol(decision.symbol)
                    position_id = position.id if position else None
                notes.extend(await self._guarded(agent, position_id, self._close(agent, position_id, prices)))

        return notes

    async def close_position(
        self,
        agent: AgentState,
        position_id: str,
        markets: List[Market],
    ) -> List[str]:
        """Close one position outside a decision turn (manual close)."""
        return await self._guarded(agent, position_id, self._close(agent, position_id, price_map(markets)))

    async def _guarded(self, agent: AgentState, position_id: Optional[str], step) -> List[str]:
        try:
            return await step
        except PositionNotFoundError:
            self.logger.info("execution.position_already_gone", agent_id=agent.id, position_id=position_id)
            return [self.already_gone_note(position_id)]
        except Exception as e:
            self.logger.error("execution.decision_failed", agent_id=agent.id, error=str(e))
            return [f"Execution Error: {e}"]

    @staticmethod
    def already_gone_note(position_id: Optional[str]) -> str:
        return f"NOTE: Attempted to close {position_id}, but position no longer exists."

    @abstractmethod
    async def open_position(
        self,
        agent: AgentState,
        item: ValidatedDecision,
        prices: Dict[str, Decimal],
    ) -> List[str]:
        """Apply a single LONG or SHORT decision."""
        pass

    @abstractmethod
    async def _close(
        self,
        agent: AgentState,
        position_id: Optional[str],
        prices: Dict[str, Decimal],
    ) -> List[str]:
        """Close ``position_id``; unknown ids produce a benign note."""
        pass

    @staticmethod
    def closing_quantity(position: Position) -> Decimal:
        return abs(position.size * position.leverage / position.entry_price)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} mode={self.mode.value}>"
