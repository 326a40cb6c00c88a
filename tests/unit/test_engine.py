"""Unit tests for the arena engine with mocked collaborators."""
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from arena.core.engine import ArenaEngine
from arena.core.errors import AgentModeError, AgentNotFoundError
from arena.core.models import AgentConfig, AgentState, Portfolio, ProposalResult, TradingMode


# =============================================================================
# Fixtures
# =============================================================================

PAPER = AgentConfig(id="paper-1", name="Paper One", prompt="Markets:\n{{marketData}}")
PAPER_2 = AgentConfig(id="paper-2", name="Paper Two", prompt="Value {{totalValue}}")
LIVE = AgentConfig(id="live-1", name="Live One", prompt="Go", mode=TradingMode.LIVE)


@pytest.fixture
def mock_database():
    db = MagicMock()
    db.list_active_agents = AsyncMock(return_value=[PAPER])
    db.load_state = AsyncMock(return_value=[])
    db.save_state = AsyncMock()
    db.set_bot_paused = AsyncMock(return_value=True)
    return db


@pytest.fixture
def build_engine(mock_database, mock_venue, mock_market_feed, arena_test_config, clock):
    """Factory for engines handing out the given providers in agent order."""

    def _build(providers, config=None):
        queue = iter(providers)
        return ArenaEngine(
            mock_database,
            mock_venue,
            mock_market_feed,
            config=config or arena_test_config,
            provider_factory=lambda kind: next(queue),
            clock=clock,
        )

    return _build


def propose(provider, *decisions, error=None):
    provider.proposals.append(ProposalResult(decisions=list(decisions), prompt="rendered", error=error))


def latest_notes(agent):
    return agent.turn_logs[0].notes


# =============================================================================
# Initialization Tests
# =============================================================================

class TestInitialize:
    """Test fleet construction."""

    @pytest.mark.asyncio
    async def test_creates_fresh_simulated_agent(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()

        agent = engine.get_agent("paper-1")
        assert agent.portfolio.balance == Decimal("10000")
        assert agent.initial_balance == Decimal("10000")

    @pytest.mark.asyncio
    async def test_resumes_saved_state(self, build_engine, mock_database, scripted_provider):
        saved = AgentState.fresh(PAPER.model_copy(update={"name": "Old Name"}), Decimal("9000"))
        saved.trade_count = 4
        mock_database.load_state.return_value = [saved]

        engine = build_engine([scripted_provider])
        await engine.initialize()

        agent = engine.get_agent("paper-1")
        assert agent.portfolio.balance == Decimal("9000")
        assert agent.trade_count == 4
        assert agent.name == "Paper One"

    @pytest.mark.asyncio
    async def test_mode_change_discards_saved_state(self, build_engine, mock_database, scripted_provider):
        saved = AgentState.fresh(LIVE.model_copy(update={"mode": TradingMode.SIMULATED}), Decimal("9000"))
        saved.trade_count = 7
        mock_database.list_active_agents.return_value = [LIVE]
        mock_database.load_state.return_value = [saved]

        engine = build_engine([scripted_provider])
        await engine.initialize()

        agent = engine.get_agent("live-1")
        assert agent.is_live
        assert agent.trade_count == 0

    @pytest.mark.asyncio
    async def test_empty_fleet(self, build_engine, mock_database):
        mock_database.list_active_agents.return_value = []

        engine = build_engine([])
        await engine.initialize()

        assert engine.agents == []

    @pytest.mark.asyncio
    async def test_config_store_failure_gives_empty_fleet(self, build_engine, mock_database):
        mock_database.list_active_agents.side_effect = RuntimeError("no such table: bots")

        engine = build_engine([])
        await engine.initialize()

        assert engine.agents == []

    @pytest.mark.asyncio
    async def test_live_agent_synced_and_precisions_loaded(
        self, build_engine, mock_database, mock_venue, scripted_provider
    ):
        mock_database.list_active_agents.return_value = [LIVE]
        mock_venue.get_account_state.return_value = Portfolio(balance=Decimal("750"), total_value=Decimal("800"))

        engine = build_engine([scripted_provider])
        await engine.initialize()

        mock_venue.get_symbol_precisions.assert_awaited_once()
        assert engine.precision.precision_for("BTCUSDT") == 3
        agent = engine.get_agent("live-1")
        assert agent.portfolio.balance == Decimal("750")
        assert agent.initial_balance == Decimal("800")

    @pytest.mark.asyncio
    async def test_precision_timeout_falls_back_to_default(
        self, build_engine, mock_database, mock_venue, arena_test_config, scripted_provider
    ):
        async def slow():
            await asyncio.sleep(1)

        mock_database.list_active_agents.return_value = [LIVE]
        mock_venue.get_symbol_precisions.side_effect = slow
        config = arena_test_config.model_copy(update={"precision_fetch_timeout": 0.05})

        engine = build_engine([scripted_provider], config=config)
        await engine.initialize()

        assert engine.precision.precisions == {}
        assert engine.precision.precision_for("BTCUSDT") == 3
        assert engine.get_agent("live-1").portfolio.total_value == Decimal("1000")

    @pytest.mark.asyncio
    async def test_simulated_only_fleet_skips_venue(self, build_engine, mock_venue, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()

        mock_venue.get_symbol_precisions.assert_not_awaited()
        mock_venue.get_account_state.assert_not_awaited()


# =============================================================================
# Decision Turn Tests
# =============================================================================

class TestTurn:
    """Test the propose-validate-execute-log turn."""

    @pytest.mark.asyncio
    async def test_turn_executes_and_logs(self, build_engine, mock_database, scripted_provider, long_decision):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        propose(scripted_provider, long_decision(leverage=75))

        await engine.run_turn()

        agent = engine.get_agent("paper-1")
        assert latest_notes(agent) == [
            "NOTE: Leverage for BTCUSDT adjusted from 75x to exchange max of 50x.",
            "SUCCESS: Opened LONG BTCUSDT position.",
        ]
        assert agent.turn_logs[0].prompt == "rendered"
        assert agent.portfolio.positions[0].leverage == 50
        assert agent.is_loading is False
        mock_database.save_state.assert_awaited()

    @pytest.mark.asyncio
    async def test_hold_logs_empty_turn(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()

        await engine.run_turn()

        agent = engine.get_agent("paper-1")
        assert len(agent.turn_logs) == 1
        assert agent.turn_logs[0].notes == []
        assert agent.portfolio.positions == []

    @pytest.mark.asyncio
    async def test_provider_error_becomes_note(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        propose(scripted_provider, error="gemini API error: 503 Service Unavailable")

        await engine.run_turn()

        assert latest_notes(engine.get_agent("paper-1")) == [
            "ERROR: Decision provider failed: gemini API error: 503 Service Unavailable"
        ]

    @pytest.mark.asyncio
    async def test_provider_sees_history_and_orders(self, build_engine, scripted_provider, long_decision):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        propose(scripted_provider, long_decision())

        await engine.run_turn()
        await engine.run_turn()

        first, second = scripted_provider.calls
        assert first.recent_logs == []
        assert len(second.recent_logs) == 1
        assert second.prompt == PAPER.prompt
        assert len(second.orders) == 1

    @pytest.mark.asyncio
    async def test_cooldown_blocks_reentry_until_expiry(
        self, build_engine, scripted_provider, clock, long_decision, close_decision
    ):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        agent = engine.get_agent("paper-1")

        propose(scripted_provider, long_decision())
        await engine.run_turn()
        position_id = agent.portfolio.positions[0].id

        propose(scripted_provider, close_decision(position_id))
        await engine.run_turn()
        assert latest_notes(agent)[0].endswith("Cooldown initiated.")

        clock.advance(minutes=10)
        propose(scripted_provider, long_decision())
        await engine.run_turn()
        assert latest_notes(agent) == [
            "REJECTED LONG BTCUSDT: Symbol is on cooldown for 20.0 more minutes."
        ]
        assert agent.portfolio.positions == []

        clock.advance(minutes=21)
        propose(scripted_provider, long_decision())
        await engine.run_turn()
        assert latest_notes(agent) == ["SUCCESS: Opened LONG BTCUSDT position."]

    @pytest.mark.asyncio
    async def test_failing_agent_does_not_block_others(
        self, build_engine, mock_database, make_provider, long_decision
    ):
        mock_database.list_active_agents.return_value = [PAPER, PAPER_2]
        broken, healthy = make_provider(), make_provider()
        broken.propose = AsyncMock(side_effect=RuntimeError("provider crashed"))
        propose(healthy, long_decision())

        engine = build_engine([broken, healthy])
        await engine.initialize()
        await engine.run_turn()

        assert engine.get_agent("paper-1").turn_logs == []
        assert engine.get_agent("paper-1").is_loading is False
        assert latest_notes(engine.get_agent("paper-2")) == ["SUCCESS: Opened LONG BTCUSDT position."]

    @pytest.mark.asyncio
    async def test_loading_flag_cleared_under_agent_lock(self, build_engine, scripted_provider):
        thinking = asyncio.Event()
        release = asyncio.Event()

        async def slow_failure(portfolio, markets, context):
            thinking.set()
            await release.wait()
            raise RuntimeError("provider crashed")

        scripted_provider.propose = slow_failure
        engine = build_engine([scripted_provider])
        await engine.initialize()
        agent = engine.get_agent("paper-1")
        lock = engine._locks["paper-1"]

        turn = asyncio.create_task(engine.run_turn())
        await asyncio.wait_for(thinking.wait(), timeout=1)
        assert agent.is_loading is True

        async with lock:
            release.set()
            for _ in range(10):
                await asyncio.sleep(0)
            assert agent.is_loading is True

        await asyncio.wait_for(turn, timeout=1)
        assert agent.is_loading is False

    @pytest.mark.asyncio
    async def test_paused_agent_skipped(self, build_engine, mock_database, make_provider):
        mock_database.list_active_agents.return_value = [PAPER, PAPER_2]
        paused, active = make_provider(), make_provider()

        engine = build_engine([paused, active])
        await engine.initialize()
        await engine.pause_agent("paper-1")
        await engine.run_turn()

        assert paused.calls == []
        assert len(active.calls) == 1
        mock_database.set_bot_paused.assert_awaited_once_with("paper-1", True)

    @pytest.mark.asyncio
    async def test_resumed_agent_trades_again(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        await engine.pause_agent("paper-1")
        await engine.resume_agent("paper-1")

        await engine.run_turn()

        assert len(scripted_provider.calls) == 1

    @pytest.mark.asyncio
    async def test_force_turn(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()

        assert await engine.force_turn()
        assert len(scripted_provider.calls) == 1


# =============================================================================
# Live Turn Tests
# =============================================================================

class TestLiveTurn:
    """Test decision turns for live agents."""

    @pytest.mark.asyncio
    async def test_live_turn_places_order_and_resyncs(
        self, build_engine, mock_database, mock_venue, scripted_provider, long_decision
    ):
        mock_database.list_active_agents.return_value = [LIVE]
        engine = build_engine([scripted_provider])
        await engine.initialize()
        propose(scripted_provider, long_decision())

        await engine.run_turn()

        assert latest_notes(engine.get_agent("live-1")) == ["SUCCESS: Opened LONG BTCUSDT position."]
        mock_venue.place_order.assert_awaited_once()
        assert mock_venue.get_account_state.await_count == 2

    @pytest.mark.asyncio
    async def test_post_trade_sync_failure_is_noted(
        self, build_engine, mock_database, mock_venue, scripted_provider, long_decision
    ):
        mock_database.list_active_agents.return_value = [LIVE]
        engine = build_engine([scripted_provider])
        await engine.initialize()
        mock_venue.get_account_state.side_effect = ConnectionError("venue down")
        propose(scripted_provider, long_decision())

        await engine.run_turn()

        notes = latest_notes(engine.get_agent("live-1"))
        assert notes == [
            "SUCCESS: Opened LONG BTCUSDT position.",
            "WARNING: Post-trade sync failed: venue down",
        ]

    @pytest.mark.asyncio
    async def test_hold_does_not_resync(self, build_engine, mock_database, mock_venue, scripted_provider):
        mock_database.list_active_agents.return_value = [LIVE]
        engine = build_engine([scripted_provider])
        await engine.initialize()

        await engine.run_turn()

        assert mock_venue.get_account_state.await_count == 1


# =============================================================================
# Refresh Tests
# =============================================================================

class TestRefresh:
    """Test the reconciliation cycle."""

    @pytest.mark.asyncio
    async def test_refresh_includes_paused_agents(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        await engine.pause_agent("paper-1")
        agent = engine.get_agent("paper-1")
        points = len(agent.value_history)

        await engine.run_refresh()

        assert len(agent.value_history) == points + 1
        assert engine.markets

    @pytest.mark.asyncio
    async def test_refresh_isolates_live_failures(
        self, build_engine, mock_database, mock_venue, make_provider
    ):
        mock_database.list_active_agents.return_value = [LIVE, PAPER]
        engine = build_engine([make_provider(), make_provider()])
        await engine.initialize()
        mock_venue.get_account_state.side_effect = ConnectionError("venue down")
        paper = engine.get_agent("paper-1")
        points = len(paper.value_history)

        await engine.run_refresh()

        assert engine.get_agent("live-1").last_sync_error == "venue down"
        assert len(paper.value_history) == points + 1

    @pytest.mark.asyncio
    async def test_refresh_waits_for_turn_holding_agent_lock(self, build_engine, mock_database, make_provider):
        mock_database.list_active_agents.return_value = [PAPER, PAPER_2]
        engine = build_engine([make_provider(), make_provider()])
        await engine.initialize()
        first, second = engine.get_agent("paper-1"), engine.get_agent("paper-2")
        first_points, second_points = len(first.value_history), len(second.value_history)

        executing = asyncio.Event()
        release = asyncio.Event()
        execute = engine.simulated_executor.execute

        async def blocking_execute(agent, accepted, markets):
            if agent.id == "paper-1":
                executing.set()
                await release.wait()
            return await execute(agent, accepted, markets)

        engine.simulated_executor.execute = blocking_execute
        turn = asyncio.create_task(engine.run_turn())
        await asyncio.wait_for(executing.wait(), timeout=1)

        refresh = asyncio.create_task(engine.run_refresh())
        for _ in range(10):
            await asyncio.sleep(0)

        # paper-1 is mid-turn; only paper-2 has been refreshed
        assert engine._locks["paper-1"].locked()
        assert not refresh.done()
        assert len(first.value_history) == first_points
        assert len(second.value_history) == second_points + 1

        release.set()
        await asyncio.wait_for(asyncio.gather(turn, refresh), timeout=1)

        assert len(first.value_history) == first_points + 1
        assert len(first.turn_logs) == 1


# =============================================================================
# Public API Tests
# =============================================================================

class TestPublicApi:
    """Test reset, manual close, pause and status."""

    @pytest.mark.asyncio
    async def test_reset_simulated_agent(self, build_engine, mock_database, scripted_provider, long_decision):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        propose(scripted_provider, long_decision())
        await engine.run_turn()

        agent = await engine.reset_agent("paper-1")

        assert agent is engine.get_agent("paper-1")
        assert agent.portfolio.balance == Decimal("10000")
        assert agent.portfolio.positions == []
        assert agent.orders == []
        assert agent.turn_logs == []
        mock_database.save_state.assert_awaited()

    @pytest.mark.asyncio
    async def test_reset_rereads_stored_config(self, build_engine, mock_database, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        mock_database.list_active_agents.return_value = [
            PAPER.model_copy(update={"name": "Paper Renamed", "prompt": "New plan {{marketData}}"})
        ]

        agent = await engine.reset_agent("paper-1")

        assert agent.name == "Paper Renamed"
        assert agent.prompt == "New plan {{marketData}}"

    @pytest.mark.asyncio
    async def test_reset_keeps_prompt_when_config_store_fails(
        self, build_engine, mock_database, scripted_provider
    ):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        mock_database.list_active_agents.side_effect = ConnectionError("db down")

        agent = await engine.reset_agent("paper-1")

        assert agent.prompt == PAPER.prompt
        assert agent.portfolio.balance == Decimal("10000")

    @pytest.mark.asyncio
    async def test_reset_refused_for_live_agent(self, build_engine, mock_database, scripted_provider):
        mock_database.list_active_agents.return_value = [LIVE]
        engine = build_engine([scripted_provider])
        await engine.initialize()

        with pytest.raises(AgentModeError):
            await engine.reset_agent("live-1")

    @pytest.mark.asyncio
    async def test_unknown_agent(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()

        with pytest.raises(AgentNotFoundError):
            engine.get_agent("nobody")
        with pytest.raises(AgentNotFoundError):
            await engine.pause_agent("nobody")

    @pytest.mark.asyncio
    async def test_manual_close(self, build_engine, scripted_provider, long_decision):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        propose(scripted_provider, long_decision())
        await engine.run_turn()
        agent = engine.get_agent("paper-1")
        position_id = agent.portfolio.positions[0].id

        notes = await engine.manual_close_position("paper-1", position_id)

        assert notes == [
            "SUCCESS: Closed BTCUSDT position with PnL $-1.00 (fees $1.00). Cooldown initiated."
        ]
        assert agent.portfolio.total_value == Decimal("9999")
        assert engine.cooldowns.is_active(agent, "BTCUSDT")

    @pytest.mark.asyncio
    async def test_manual_close_unknown_position(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.initialize()

        notes = await engine.manual_close_position("paper-1", "ghost")

        assert notes == ["NOTE: Attempted to close ghost, but position no longer exists."]

    @pytest.mark.asyncio
    async def test_global_pause(self, build_engine, scripted_provider):
        engine = build_engine([scripted_provider])
        engine.pause()

        assert engine.scheduler.is_paused
        engine.resume()
        assert not engine.scheduler.is_paused

    @pytest.mark.asyncio
    async def test_status(self, build_engine, scripted_provider, long_decision):
        engine = build_engine([scripted_provider])
        await engine.initialize()
        propose(scripted_provider, long_decision())
        await engine.run_turn()

        status = engine.get_status()

        summary = status["agents"]["paper-1"]
        assert summary["mode"] == "simulated"
        assert summary["positions"] == 1
        assert summary["balance"] == "9900"
        assert status["markets"]["BTCUSDT"] == "50000"
        assert "turn" in status["scheduler"]["cycles"]

    @pytest.mark.asyncio
    async def test_stop_saves_state(self, build_engine, mock_database, scripted_provider):
        engine = build_engine([scripted_provider])
        await engine.start()

        await engine.stop()

        mock_database.save_state.assert_awaited()
        assert not engine.scheduler.is_running
