"""Decision provider interface and prompt handling.

A provider turns an agent's prompt template plus the current portfolio and
market snapshot into a list of proposed decisions. Providers never raise out
of ``propose``: failures come back as ``ProposalResult.error`` so the engine
can hold the agent for the turn.
"""
import json
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from arena.core.config import ProviderConfig, provider_config
from arena.core.errors import ProviderError
from arena.core.models import (
    Decision,
    DecisionAction,
    Market,
    Order,
    Portfolio,
    ProposalResult,
    ProviderKind,
    TurnLog,
    utcnow,
)

logger = structlog.get_logger(__name__)

JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


@dataclass
class AgentContext:
    """Agent state a provider needs beyond portfolio and markets.

    Attributes:
        agent_id: Agent the proposal is for
        prompt: Prompt template with ``{{placeholder}}`` slots
        recent_logs: Most recent turn logs, newest first
        cooldowns: Symbol -> cooldown expiry
        orders: Trade records, oldest first
        now: Reference time for ages and remaining cooldowns
    """
    agent_id: str
    prompt: str
    recent_logs: List[TurnLog] = field(default_factory=list)
    cooldowns: Dict[str, datetime] = field(default_factory=dict)
    orders: List[Order] = field(default_factory=list)
    now: datetime = field(default_factory=utcnow)


# =============================================================================
# Prompt
# =============================================================================

def _money(value: Optional[Decimal], places: int = 2, missing: str = "N/A") -> str:
    if value is None:
        return missing
    return f"{Decimal(value):.{places}f}"


def _format_markets(markets: List[Market]) -> str:
    return "\n".join(
        f" - {m.symbol}: ${m.price:.4f} (24h change: {m.change_24h:.2f}%)"
        for m in markets
    )


def _format_positions(portfolio: Portfolio, context: AgentContext) -> str:
    if not portfolio.positions:
        return "None"

    lines = []
    for p in portfolio.positions:
        open_orders = [o for o in context.orders if o.symbol == p.symbol and o.is_open]
        if open_orders:
            minutes_open = str(int((context.now - open_orders[-1].timestamp).total_seconds() // 60))
        else:
            minutes_open = "?"
        lines.append(
            f" - ID: {p.id}, Symbol: {p.symbol}, Type: {p.side.value.upper()}, "
            f"Size: ${p.size:.2f}, Leverage: {p.leverage}x, Entry: ${p.entry_price:.4f}, "
            f"SL: ${_money(p.stop_loss, 4)}, TP: ${_money(p.take_profit, 4)}, "
            f"Open for: {minutes_open} minutes"
        )
    return "\n".join(lines)


def _format_history(context: AgentContext, depth: int) -> str:
    logs = context.recent_logs[:depth]
    if not logs:
        return ""

    out = f"\n\nYour Recent Decision History (last {depth} cycles):\n"
    for log in logs:
        minutes_ago = int((context.now - log.timestamp).total_seconds() // 60)
        out += f"\n[{minutes_ago} minutes ago]:\n"
        if not log.decisions:
            out += "  - HOLD (no action taken)\n"
        for d in log.decisions:
            out += f"  - {d.action.value} {d.symbol or d.close_position_id}: {d.reasoning}\n"
        if log.notes:
            out += f"  Notes: {'; '.join(log.notes)}\n"
    return out


def _format_cooldowns(context: AgentContext) -> str:
    active = []
    for symbol, expiry in context.cooldowns.items():
        if context.now < expiry:
            minutes_left = math.ceil((expiry - context.now).total_seconds() / 60)
            active.append(f"{symbol} ({minutes_left} minutes remaining)")
    if not active:
        return ""
    return "\n\nSymbols Currently on Cooldown:\n" + ", ".join(active) + "\n"


def build_prompt(
    portfolio: Portfolio,
    markets: List[Market],
    context: AgentContext,
    history_depth: int = 5,
) -> str:
    """Fill the agent's prompt template and append recent history.

    Supported placeholders: ``{{totalValue}}``, ``{{availableBalance}}``,
    ``{{unrealizedPnl}}``, ``{{openPositions}}``, ``{{marketData}}`` and
    ``{{currentDate}}``.

    Args:
        portfolio: Portfolio snapshot
        markets: Market snapshot
        context: Template, recent turn logs, cooldowns and orders
        history_depth: Number of recent turns to include

    Returns:
        Full prompt text
    """
    replacements = {
        "{{totalValue}}": _money(portfolio.total_value),
        "{{availableBalance}}": _money(portfolio.balance),
        "{{unrealizedPnl}}": _money(portfolio.pnl),
        "{{openPositions}}": _format_positions(portfolio, context),
        "{{marketData}}": _format_markets(markets),
        "{{currentDate}}": context.now.strftime("%a, %d %b %Y %H:%M:%S GMT"),
    }
    text = context.prompt
    for placeholder, value in replacements.items():
        text = text.replace(placeholder, value)
    return text + _format_history(context, history_depth) + _format_cooldowns(context)


def parse_decisions(text: str) -> List[Decision]:
    """Extract decisions from model output.

    The first JSON array in ``text`` is parsed; HOLD entries are dropped.

    Raises:
        ProviderError: No array found, invalid JSON, or an invalid entry
    """
    if not text:
        raise ProviderError("Empty response from decision provider")

    match = JSON_ARRAY_PATTERN.search(text)
    if not match:
        raise ProviderError("No JSON array found in provider response")

    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ProviderError(f"JSON parse error: {e}") from e

    decisions = []
    for item in raw:
        if not isinstance(item, dict):
            raise ProviderError(f"Decision entry is not an object: {item!r}")
        try:
            decision = Decision.model_validate(item)
        except (ValidationError, ValueError) as e:
            raise ProviderError(f"Invalid decision entry: {e}") from e
        if decision.action != DecisionAction.HOLD:
            decisions.append(decision)
    return decisions


# =============================================================================
# Provider Interface
# =============================================================================

class DecisionProvider(ABC):
    """
    Abstract base class for LLM decision sources.

    Subclasses implement ``_complete(prompt) -> str`` against their API;
    prompt building and response parsing are shared.

    Attributes:
        kind: Provider kind
        config: Provider configuration
        client: Optional shared httpx client (one per call when None)
    """

    kind: ProviderKind

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        history_depth: int = 5,
    ):
        self.config = config or provider_config
        self.client = client
        self.history_depth = history_depth
        self.logger = logger.bind(provider=self.kind.value)

    async def propose(
        self,
        portfolio: Portfolio,
        markets: List[Market],
        context: AgentContext,
    ) -> ProposalResult:
        """Ask the model for decisions.

        Args:
            portfolio: Portfolio snapshot
            markets: Market snapshot
            context: Agent context for the prompt

        Returns:
            ProposalResult; ``error`` is set instead of raising
        """
        prompt = build_prompt(portfolio, markets, context, self.history_depth)
        try:
            text = await self._complete(prompt)
            decisions = parse_decisions(text)
        except ProviderError as e:
            self.logger.warning("provider.bad_response", agent_id=context.agent_id, error=str(e))
            return ProposalResult(prompt=prompt, error=str(e))
        except Exception as e:
            self.logger.error("provider.request_failed", agent_id=context.agent_id, error=str(e))
            return ProposalResult(prompt=prompt, error=f"{self.kind.value} API error: {e}")

        self.logger.info(
            "provider.decisions_received",
            agent_id=context.agent_id,
            count=len(decisions),
            prompt_chars=len(prompt),
        )
        return ProposalResult(prompt=prompt, decisions=decisions)

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        if self.client is not None:
            response = await self.client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

    @abstractmethod
    async def _complete(self, prompt: str) -> str:
        """Send ``prompt`` and return the model's text output."""
        pass
