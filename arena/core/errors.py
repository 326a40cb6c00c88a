"""Exception hierarchy for the Trading Arena.

Validation rejections are not exceptions: they are recorded as turn notes.
Everything here is raised at a component boundary and caught at the
per-agent isolation boundary in the engine.
"""
from typing import Optional


class ArenaError(Exception):
    """Base class for all arena errors."""


class ConfigurationError(ArenaError):
    """Missing agents, credentials or other required configuration."""


class ProviderError(ArenaError):
    """Decision source failed or returned a malformed payload."""


class ExecutionFailure(ArenaError):
    """A venue order or leverage call was rejected.

    Attributes:
        symbol: Symbol the failed call referred to
        leg: Which leg failed ("open", "stop_loss", "take_profit", "close", "leverage")
    """

    def __init__(self, message: str, symbol: Optional[str] = None, leg: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol
        self.leg = leg


class PositionNotFoundError(ExecutionFailure):
    """The venue reports there is nothing left to reduce for this position."""


class ReconciliationTimeout(ArenaError):
    """Venue sync did not complete within its time budget."""


class AgentNotFoundError(ArenaError):
    """Unknown agent id."""


class AgentModeError(ArenaError):
    """Operation not allowed in the agent's trading mode."""
