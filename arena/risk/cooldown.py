"""Per-symbol re-entry cooldowns."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional

import structlog

from arena.core.config import arena_config
from arena.core.models import AgentState

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CooldownTracker:
    """Reads and writes the symbol cooldown map held on each agent.

    Entries are written only when a close succeeds and read only when a new
    directional decision is validated. Expiry is checked lazily, nothing is
    ever swept.

    Attributes:
        duration: Cooldown window started by a close
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        duration: Optional[timedelta] = None,
        clock: Optional[Clock] = None,
    ):
        self.duration = duration or timedelta(minutes=arena_config.symbol_cooldown_minutes)
        self.clock = clock or _utcnow

    def start(self, agent: AgentState, symbol: str) -> datetime:
        """Begin a cooldown for ``symbol`` and return its expiry."""
        expiry = self.clock() + self.duration
        agent.symbol_cooldowns[symbol] = expiry
        logger.info(
            "cooldown.started",
            agent_id=agent.id,
            symbol=symbol,
            expires_at=expiry.isoformat(),
        )
        return expiry

    def is_active(self, agent: AgentState, symbol: Optional[str]) -> bool:
        if not symbol:
            return False
        expiry = agent.symbol_cooldowns.get(symbol)
        return expiry is not None and self.clock() < expiry

    def remaining(self, agent: AgentState, symbol: str) -> timedelta:
        """Time left on the cooldown, zero when none is active."""
        if not self.is_active(agent, symbol):
            return timedelta(0)
        return agent.symbol_cooldowns[symbol] - self.clock()

    def remaining_minutes(self, agent: AgentState, symbol: str) -> Decimal:
        seconds = Decimal(str(self.remaining(agent, symbol).total_seconds()))
        return seconds / 60

    def active(self, agent: AgentState) -> Dict[str, timedelta]:
        """All unexpired cooldowns for ``agent``."""
        now = self.clock()
        return {
            symbol: expiry - now
            for symbol, expiry in agent.symbol_cooldowns.items()
            if now < expiry
        }
