"""Pytest fixtures and utilities for the Trading Arena test suite."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from arena.core.config import ArenaConfig
from arena.core.models import (
    AgentConfig,
    AgentState,
    Decision,
    DecisionAction,
    Market,
    Portfolio,
    ProposalResult,
    ProviderKind,
    TradingMode,
)
from arena.exchange.venue_client import VenueClient
from arena.providers.base import AgentContext, DecisionProvider
from arena.risk.cooldown import CooldownTracker
from arena.storage.database import Database


# =============================================================================
# Helpers
# =============================================================================

class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class ScriptedProvider(DecisionProvider):
    """Decision provider returning queued proposals; holds when the queue is empty."""

    kind = ProviderKind.GEMINI

    def __init__(self, proposals: Optional[List[ProposalResult]] = None):
        super().__init__()
        self.proposals = list(proposals or [])
        self.calls: List[AgentContext] = []

    async def propose(self, portfolio, markets, context) -> ProposalResult:
        self.calls.append(context)
        if self.proposals:
            return self.proposals.pop(0)
        return ProposalResult(prompt="hold")

    async def _complete(self, prompt: str) -> str:
        return "[]"


def _long_decision(symbol="BTCUSDT", size="100", leverage=10, **kwargs) -> Decision:
    return Decision(
        action=DecisionAction.LONG,
        symbol=symbol,
        size=Decimal(size),
        leverage=leverage,
        reasoning="test",
        **kwargs,
    )


def _close_decision(position_id: str) -> Decision:
    return Decision(action=DecisionAction.CLOSE, close_position_id=position_id, reasoning="test")


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def arena_test_config():
    """Arena configuration with test-friendly values."""
    return ArenaConfig(
        turn_interval_seconds=300.0,
        refresh_interval_seconds=10.0,
        minimum_trade_size_usd=Decimal("50"),
        symbol_cooldown_minutes=30.0,
        simulated_fee_pct=Decimal("0.0005"),
        simulated_initial_balance=Decimal("10000"),
        live_initial_balance=Decimal("1000"),
        precision_fetch_timeout=0.5,
        live_sync_timeout=0.5,
        symbols_str="BTCUSDT,ETHUSDT",
    )


# =============================================================================
# Clock and Risk Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cooldowns(clock):
    return CooldownTracker(duration=timedelta(minutes=30), clock=clock)


# =============================================================================
# Agent and Market Fixtures
# =============================================================================

@pytest.fixture
def markets():
    return [
        Market(symbol="BTCUSDT", price=Decimal("50000"), change_24h=Decimal("1.25")),
        Market(symbol="ETHUSDT", price=Decimal("3000"), change_24h=Decimal("-0.5")),
    ]


@pytest.fixture
def simulated_agent():
    config = AgentConfig(id="paper-1", name="Paper One", prompt="Trade well.")
    return AgentState.fresh(config, Decimal("10000"))


@pytest.fixture
def live_agent():
    config = AgentConfig(
        id="live-1",
        name="Live One",
        prompt="Trade carefully.",
        provider=ProviderKind.GROK,
        mode=TradingMode.LIVE,
    )
    agent = AgentState.fresh(config, Decimal("1000"))
    agent.portfolio = Portfolio(balance=Decimal("1000"), total_value=Decimal("1000"))
    return agent


# =============================================================================
# Collaborator Fixtures
# =============================================================================

@pytest.fixture
def mock_venue():
    """Venue client with every network call mocked."""
    venue = MagicMock(spec=VenueClient)
    venue.set_leverage = AsyncMock(return_value=None)
    venue.place_order = AsyncMock(return_value={"id": "ex-1"})
    venue.get_account_state = AsyncMock(
        return_value=Portfolio(balance=Decimal("1000"), total_value=Decimal("1000"))
    )
    venue.get_trade_history = AsyncMock(return_value=[])
    venue.get_symbol_precisions = AsyncMock(return_value={"BTCUSDT": 3, "ETHUSDT": 3})
    venue.fetch_markets = AsyncMock(return_value=[])
    venue.close = AsyncMock()
    return venue


@pytest.fixture
def mock_market_feed(markets):
    feed = MagicMock()
    feed.fetch = AsyncMock(return_value=markets)
    return feed


@pytest_asyncio.fixture
async def database():
    """In-memory SQLite database."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.initialize()
    yield db
    await db.close()


# =============================================================================
# Decision Fixtures
# =============================================================================

@pytest.fixture
def long_decision():
    """Factory for LONG decisions (BTCUSDT, $100 margin, 10x by default)."""
    return _long_decision


@pytest.fixture
def close_decision():
    """Factory for CLOSE decisions by position id."""
    return _close_decision


@pytest.fixture
def scripted_provider():
    """Provider returning queued proposals; append to ``.proposals``."""
    return ScriptedProvider()


@pytest.fixture
def make_provider():
    """Factory for further scripted providers in multi-agent tests."""
    return ScriptedProvider
