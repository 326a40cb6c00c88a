"""Unit tests for the decision validation pipeline."""
from decimal import Decimal

import pytest

from arena.core.models import Decision, DecisionAction
from arena.risk.validation import LEVERAGE_LIMITS, ValidationPipeline


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def pipeline(cooldowns):
    """Pipeline with the default rules and a frozen clock."""
    return ValidationPipeline(cooldowns=cooldowns, minimum_size=Decimal("50"), default_max_leverage=25)


# =============================================================================
# Minimum Size Tests
# =============================================================================

class TestMinimumSize:
    """Test the minimum margin rule."""

    def test_rejects_below_minimum(self, pipeline, simulated_agent, long_decision):
        result = pipeline.validate(simulated_agent, [long_decision(size="40")])

        assert result.accepted == []
        assert result.notes == ["REJECTED LONG BTCUSDT: Margin $40.00 is below minimum of $50."]
        assert result.rejected_count == 1

    def test_accepts_exact_minimum(self, pipeline, simulated_agent, long_decision):
        result = pipeline.validate(simulated_agent, [long_decision(size="50")])

        assert len(result.accepted) == 1
        assert result.notes == []

    def test_missing_size_is_rejected(self, pipeline, simulated_agent):
        decision = Decision(action=DecisionAction.SHORT, symbol="ETHUSDT", leverage=5)

        result = pipeline.validate(simulated_agent, [decision])

        assert result.accepted == []
        assert result.notes[0].startswith("REJECTED SHORT ETHUSDT: Margin $0.00")

    def test_close_is_not_size_checked(self, pipeline, simulated_agent, close_decision):
        result = pipeline.validate(simulated_agent, [close_decision("pos-1")])

        assert len(result.accepted) == 1
        assert result.notes == []


# =============================================================================
# Cooldown Tests
# =============================================================================

class TestCooldownRule:
    """Test cooldown rejection."""

    def test_rejects_symbol_on_cooldown(self, pipeline, cooldowns, clock, simulated_agent, long_decision):
        cooldowns.start(simulated_agent, "BTCUSDT")
        clock.advance(minutes=10)

        result = pipeline.validate(simulated_agent, [long_decision()])

        assert result.accepted == []
        assert result.notes == ["REJECTED LONG BTCUSDT: Symbol is on cooldown for 20.0 more minutes."]

    def test_accepts_after_expiry(self, pipeline, cooldowns, clock, simulated_agent, long_decision):
        cooldowns.start(simulated_agent, "BTCUSDT")
        clock.advance(minutes=31)

        result = pipeline.validate(simulated_agent, [long_decision()])

        assert len(result.accepted) == 1

    def test_close_allowed_during_cooldown(self, pipeline, cooldowns, simulated_agent):
        cooldowns.start(simulated_agent, "BTCUSDT")
        decision = Decision(action=DecisionAction.CLOSE, symbol="BTCUSDT", close_position_id="p")

        result = pipeline.validate(simulated_agent, [decision])

        assert len(result.accepted) == 1

    def test_size_rule_runs_first(self, pipeline, cooldowns, simulated_agent, long_decision):
        cooldowns.start(simulated_agent, "BTCUSDT")

        result = pipeline.validate(simulated_agent, [long_decision(size="10")])

        assert len(result.notes) == 1
        assert "below minimum" in result.notes[0]


# =============================================================================
# Leverage Clamp Tests
# =============================================================================

class TestLeverageClamp:
    """Test leverage clamping to the venue cap."""

    def test_clamps_and_notes(self, pipeline, simulated_agent, long_decision):
        result = pipeline.validate(simulated_agent, [long_decision(symbol="SOLUSDT", leverage=100)])

        assert len(result.accepted) == 1
        assert result.accepted[0].leverage == 25
        assert result.notes == ["NOTE: Leverage for SOLUSDT adjusted from 100x to exchange max of 25x."]
        assert result.rejected_count == 0

    def test_within_cap_unchanged(self, pipeline, simulated_agent, long_decision):
        result = pipeline.validate(simulated_agent, [long_decision(symbol="BTCUSDT", leverage=50)])

        assert result.accepted[0].leverage == 50
        assert result.notes == []

    def test_unknown_symbol_uses_default_cap(self, pipeline, simulated_agent, long_decision):
        result = pipeline.validate(simulated_agent, [long_decision(symbol="ADAUSDT", leverage=40)])

        assert result.accepted[0].leverage == 25

    def test_missing_leverage_defaults_to_one(self, pipeline, simulated_agent):
        decision = Decision(action=DecisionAction.LONG, symbol="BTCUSDT", size=Decimal("100"))

        result = pipeline.validate(simulated_agent, [decision])

        assert result.accepted[0].leverage == 1

    def test_leverage_table(self):
        assert LEVERAGE_LIMITS["BTCUSDT"] == 50
        assert LEVERAGE_LIMITS["DOGEUSDT"] == 25


# =============================================================================
# Pipeline Tests
# =============================================================================

class TestPipeline:
    """Test ordering and purity of the whole pipeline."""

    def test_preserves_proposal_order(self, pipeline, simulated_agent, long_decision, close_decision):
        decisions = [
            long_decision(symbol="ETHUSDT"),
            long_decision(symbol="SOLUSDT", size="10"),
            close_decision("pos-1"),
            long_decision(symbol="BTCUSDT"),
        ]

        result = pipeline.validate(simulated_agent, decisions)

        assert [v.decision for v in result.accepted] == [decisions[0], decisions[2], decisions[3]]
        assert len(result.notes) == 1

    def test_hold_is_skipped(self, pipeline, simulated_agent):
        result = pipeline.validate(simulated_agent, [Decision(action=DecisionAction.HOLD)])

        assert result.accepted == []
        assert result.notes == []

    def test_does_not_mutate_agent(self, pipeline, simulated_agent, long_decision):
        before = simulated_agent.model_dump()

        pipeline.validate(simulated_agent, [long_decision(leverage=200), long_decision(size="1")])

        assert simulated_agent.model_dump() == before
