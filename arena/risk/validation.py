"""Risk validation of proposed decisions.

Each proposed decision passes through a fixed, ordered set of rules:

1. Minimum size: directional decisions below the minimum margin are rejected
2. Cooldown: directional decisions on a cooling-down symbol are rejected
3. Leverage clamp: leverage above the symbol's venue cap is reduced to the cap

Rejections and adjustments are returned as notes, never raised. The pipeline
reads agent state but never mutates it.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import structlog

from arena.core.config import arena_config
from arena.core.models import AgentState, Decision, DecisionAction
from arena.risk.cooldown import CooldownTracker

logger = structlog.get_logger(__name__)


# Maximum leverage the venue allows per symbol
LEVERAGE_LIMITS: Dict[str, int] = {
    "BTCUSDT": 50,
    "ETHUSDT": 50,
    "SOLUSDT": 25,
    "BNBUSDT": 25,
    "XRPUSDT": 25,
    "DOGEUSDT": 25,
}


@dataclass
class ValidatedDecision:
    """A decision that survived validation.

    Attributes:
        decision: The decision as proposed
        leverage: Effective leverage after clamping
    """
    decision: Decision
    leverage: int = 1


@dataclass
class ValidationResult:
    """Outcome of validating one turn's decisions.

    Attributes:
        accepted: Surviving decisions in proposal order
        notes: Rejection and adjustment notes in proposal order
    """
    accepted: List[ValidatedDecision] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        return sum(1 for n in self.notes if n.startswith("REJECTED"))


@dataclass
class RuleCheck:
    """Result of a single rule.

    Attributes:
        passed: False rejects the decision
        note: Note to record (rejection reason or adjustment)
        leverage: Leverage to carry forward to later rules
    """
    passed: bool
    note: Optional[str] = None
    leverage: Optional[int] = None


@dataclass
class ValidationRule:
    """Named rule in the pipeline.

    Attributes:
        name: Rule identifier used in logs
        check_fn: (agent, decision, leverage) -> RuleCheck
        priority: Lower runs first
    """
    name: str
    check_fn: Callable[[AgentState, Decision, int], RuleCheck]
    priority: int = 100


class ValidationPipeline:
    """Deterministic risk policy applied to every decision turn.

    Attributes:
        minimum_size: Minimum margin in USD for a directional decision
        leverage_limits: Symbol -> maximum leverage
        default_max_leverage: Cap for symbols missing from the table
        cooldowns: Tracker used to read cooldown state
    """

    def __init__(
        self,
        cooldowns: Optional[CooldownTracker] = None,
        minimum_size: Optional[Decimal] = None,
        leverage_limits: Optional[Dict[str, int]] = None,
        default_max_leverage: Optional[int] = None,
    ):
        self.cooldowns = cooldowns or CooldownTracker()
        self.minimum_size = minimum_size if minimum_size is not None else arena_config.minimum_trade_size_usd
        self.leverage_limits = dict(LEVERAGE_LIMITS if leverage_limits is None else leverage_limits)
        self.default_max_leverage = default_max_leverage or arena_config.default_max_leverage

        self._rules = sorted(
            [
                ValidationRule("minimum_size", self._check_minimum_size, priority=1),
                ValidationRule("cooldown", self._check_cooldown, priority=2),
                ValidationRule("leverage_clamp", self._clamp_leverage, priority=3),
            ],
            key=lambda r: r.priority,
        )

    def max_leverage(self, symbol: Optional[str]) -> int:
        return self.leverage_limits.get(symbol or "", self.default_max_leverage)

    def validate(self, agent: AgentState, decisions: List[Decision]) -> ValidationResult:
        """Validate ``decisions`` for ``agent`` in proposal order.

        Args:
            agent: Agent the decisions were proposed for
            decisions: Proposed decisions with HOLD already removed

        Returns:
            ValidationResult with accepted decisions and notes
        """
        result = ValidationResult()

        for decision in decisions:
            if decision.action == DecisionAction.HOLD:
                continue

            leverage = decision.leverage or 1
            rejected = False
            for rule in self._rules:
                check = rule.check_fn(agent, decision, leverage)
                if check.note:
                    result.notes.append(check.note)
                if not check.passed:
                    logger.info(
                        "validation.decision_rejected",
                        agent_id=agent.id,
                        rule=rule.name,
                        action=decision.action.value,
                        symbol=decision.symbol,
                    )
                    rejected = True
                    break
                if check.leverage is not None:
                    leverage = check.leverage

            if not rejected:
                result.accepted.append(ValidatedDecision(decision=decision, leverage=leverage))

        return result

    # === Rule Implementations ===

    def _check_minimum_size(self, agent: AgentState, decision: Decision, leverage: int) -> RuleCheck:
        if not decision.is_directional:
            return RuleCheck(passed=True)
        size = decision.size or Decimal("0")
        if size < self.minimum_size:
            return RuleCheck(
                passed=False,
                note=(
                    f"REJECTED {decision.action.value} {decision.symbol}: Margin ${size:.2f} "
                    f"is below minimum of ${self.minimum_size}."
                ),
            )
        return RuleCheck(passed=True)

    def _check_cooldown(self, agent: AgentState, decision: Decision, leverage: int) -> RuleCheck:
        if not decision.is_directional or not self.cooldowns.is_active(agent, decision.symbol):
            return RuleCheck(passed=True)
        minutes = self.cooldowns.remaining_minutes(agent, decision.symbol)
        return RuleCheck(
            passed=False,
            note=(
                f"REJECTED {decision.action.value} {decision.symbol}: Symbol is on cooldown "
                f"for {minutes:.1f} more minutes."
            ),
        )

    def _clamp_leverage(self, agent: AgentState, decision: Decision, leverage: int) -> RuleCheck:
        if not decision.is_directional:
            return RuleCheck(passed=True)
        cap = self.max_leverage(decision.symbol)
        if leverage > cap:
            return RuleCheck(
                passed=True,
                leverage=cap,
                note=(
                    f"NOTE: Leverage for {decision.symbol} adjusted from {leverage}x "
                    f"to exchange max of {cap}x."
                ),
            )
        return RuleCheck(passed=True, leverage=max(leverage, 1))
