"""Data models for the Trading Arena.

This module defines the data structures shared by the orchestration core:
- Market snapshots and venue order requests
- Positions, trade records (orders) and portfolios
- Decisions proposed by the AI providers and the per-turn log
- Agent configuration (from the config store) and agent runtime state

All monetary values use Decimal for precision.
All timestamps are timezone-aware UTC datetime objects.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class TradingMode(str, Enum):
    """How an agent's decisions are executed."""
    SIMULATED = "simulated"       # Internal ledger arithmetic
    LIVE = "live"                 # Real orders on the venue


class ProviderKind(str, Enum):
    """Decision source bound to an agent."""
    GEMINI = "gemini"
    GROK = "grok"


class DecisionAction(str, Enum):
    """Actions an agent may propose."""
    LONG = "LONG"
    SHORT = "SHORT"
    CLOSE = "CLOSE"
    HOLD = "HOLD"


class PositionSide(str, Enum):
    """Position side."""
    LONG = "long"
    SHORT = "short"


class OrderSide(str, Enum):
    """Venue order side."""
    BUY = "BUY"
    SELL = "SELL"


class VenueOrderType(str, Enum):
    """Venue order types used by live execution."""
    MARKET = "MARKET"
    STOP_MARKET = "STOP_MARKET"
    TAKE_PROFIT_MARKET = "TAKE_PROFIT_MARKET"


# =============================================================================
# Market Data Models
# =============================================================================

class Market(BaseModel):
    """Latest price snapshot for one symbol.

    Attributes:
        symbol: Venue symbol id (e.g., "BTCUSDT")
        price: Last traded price
        change_24h: 24h price change in percent
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    symbol: str = Field(..., description="Symbol")
    price: Decimal = Field(..., gt=0, description="Last price")
    change_24h: Decimal = Field(default=Decimal("0"), description="24h change %")


def price_map(markets: List[Market]) -> Dict[str, Decimal]:
    """Index a market snapshot by symbol."""
    return {m.symbol: m.price for m in markets}


# =============================================================================
# Position Models
# =============================================================================

class Position(BaseModel):
    """Open leveraged position held by an agent.

    ``size`` is the USD margin committed; the leveraged notional is
    ``size * leverage``.

    Attributes:
        symbol: Symbol
        side: Long or short
        entry_price: Average entry price
        size: Margin in USD
        leverage: Integer leverage (1 = unlevered)
        id: Position ID (unique per agent)
        stop_loss: Optional stop-loss trigger price
        take_profit: Optional take-profit trigger price
        pnl: Live unrealized PnL
        opened_at: Open timestamp
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    symbol: str = Field(..., description="Symbol")
    side: PositionSide = Field(..., description="Position side")
    entry_price: Decimal = Field(..., gt=0, description="Entry price")
    size: Decimal = Field(..., ge=0, description="Margin (USD)")
    leverage: int = Field(default=1, ge=1, description="Leverage")

    id: str = Field(default_factory=lambda: str(uuid4()), description="Position ID")
    stop_loss: Optional[Decimal] = Field(default=None, description="Stop loss price")
    take_profit: Optional[Decimal] = Field(default=None, description="Take profit price")
    pnl: Decimal = Field(default=Decimal("0"), description="Unrealized PnL")
    opened_at: datetime = Field(default_factory=utcnow, description="Open time")

    @property
    def notional(self) -> Decimal:
        """Leveraged position value at entry."""
        return self.size * self.leverage

    @property
    def quantity(self) -> Decimal:
        """Asset quantity implied by margin, leverage and entry price."""
        return self.notional / self.entry_price

    def calculate_pnl(self, price: Decimal) -> Decimal:
        """PnL of the whole position at ``price``, before fees."""
        direction = 1 if self.side == PositionSide.LONG else -1
        return (price - self.entry_price) * self.quantity * direction


# =============================================================================
# Trade Record Models
# =============================================================================

class Order(BaseModel):
    """Trade record for an open or close.

    Attributes:
        symbol: Symbol
        side: Long or short (the side of the position)
        entry_price: Entry price of the position
        exit_price: Exit price (0 while the record describes an open)
        size: Margin in USD
        leverage: Leverage
        pnl: Realized PnL
        fee: Fees charged for this record
        id: Record ID
        position_id: Position this record belongs to
        timestamp: Execution time
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    symbol: str
    side: PositionSide
    entry_price: Decimal
    exit_price: Decimal = Decimal("0")
    size: Decimal
    leverage: int = 1
    pnl: Decimal = Decimal("0")
    fee: Decimal = Decimal("0")

    id: str = Field(default_factory=lambda: str(uuid4()))
    position_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        """True if this record describes an opening fill."""
        return self.exit_price == 0


# =============================================================================
# Portfolio Models
# =============================================================================

class Portfolio(BaseModel):
    """Agent portfolio.

    Attributes:
        balance: Uncommitted capital
        pnl: Unrealized PnL across open positions
        total_value: Account value
        positions: Open positions (unique by id)
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    balance: Decimal = Field(default=Decimal("0"), description="Available balance")
    pnl: Decimal = Field(default=Decimal("0"), description="Unrealized PnL")
    total_value: Decimal = Field(default=Decimal("0"), description="Total value")
    positions: List[Position] = Field(default_factory=list, description="Open positions")

    @classmethod
    def fresh(cls, balance: Decimal) -> "Portfolio":
        """Empty portfolio holding only ``balance``."""
        return cls(balance=balance, total_value=balance)

    @property
    def margin_used(self) -> Decimal:
        """Sum of margin committed to open positions."""
        return sum((p.size for p in self.positions), Decimal("0"))

    def find_position(self, position_id: str) -> Optional[Position]:
        """Look up an open position by id."""
        for position in self.positions:
            if position.id == position_id:
                return position
        return None

    def find_by_symbol(self, symbol: str) -> Optional[Position]:
        """First open position on ``symbol``."""
        for position in self.positions:
            if position.symbol == symbol:
                return position
        return None


# =============================================================================
# Decision Models
# =============================================================================

class Decision(BaseModel):
    """Action proposed by an agent's decision provider.

    Providers emit camelCase JSON; both spellings are accepted.
    """
    model_config = ConfigDict(populate_by_name=True, json_encoders={Decimal: str})

    action: DecisionAction
    symbol: Optional[str] = None
    size: Optional[Decimal] = None
    leverage: Optional[int] = None
    stop_loss: Optional[Decimal] = Field(default=None, alias="stopLoss")
    take_profit: Optional[Decimal] = Field(default=None, alias="takeProfit")
    close_position_id: Optional[str] = Field(default=None, alias="closePositionId")
    reasoning: str = ""

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("leverage", mode="before")
    @classmethod
    def coerce_leverage(cls, v: Any) -> Any:
        """Models sometimes send 10.0 or "10x"."""
        if isinstance(v, str):
            v = v.strip().lower().rstrip("x")
        if v in (None, ""):
            return None
        return int(float(v))

    @property
    def is_directional(self) -> bool:
        """True for LONG and SHORT."""
        return self.action in (DecisionAction.LONG, DecisionAction.SHORT)

    @property
    def position_side(self) -> Optional[PositionSide]:
        if self.action == DecisionAction.LONG:
            return PositionSide.LONG
        if self.action == DecisionAction.SHORT:
            return PositionSide.SHORT
        return None


class ProposalResult(BaseModel):
    """What a decision provider returns for one turn.

    An empty ``decisions`` list means hold. ``error`` carries a provider
    failure without raising.
    """
    decisions: List[Decision] = Field(default_factory=list)
    prompt: str = ""
    error: Optional[str] = None


class TurnLog(BaseModel):
    """Record of one decision turn for one agent."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    timestamp: datetime = Field(default_factory=utcnow)
    decisions: List[Decision] = Field(default_factory=list)
    prompt: str = ""
    notes: List[str] = Field(default_factory=list)


class ValuePoint(BaseModel):
    """One point of the total-value time series."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    timestamp: datetime = Field(default_factory=utcnow)
    value: Decimal


# =============================================================================
# Venue Models
# =============================================================================

class VenueOrderRequest(BaseModel):
    """Order submitted to the live venue."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    symbol: str
    side: OrderSide
    type: VenueOrderType = VenueOrderType.MARKET
    quantity: Decimal = Field(..., gt=0)
    stop_price: Optional[Decimal] = Field(default=None, validate_default=True)
    reduce_only: bool = False

    @field_validator("stop_price")
    @classmethod
    def stop_price_required_for_conditional(cls, v: Optional[Decimal], info) -> Optional[Decimal]:
        order_type = info.data.get("type")
        if order_type in (VenueOrderType.STOP_MARKET, VenueOrderType.TAKE_PROFIT_MARKET):
            if v is None or v <= 0:
                raise ValueError(f"stop_price required and must be positive for {order_type}")
        return v


# =============================================================================
# Agent Models
# =============================================================================

class AgentConfig(BaseModel):
    """Agent definition as listed by the config store."""
    id: str
    name: str
    prompt: str
    provider: ProviderKind = ProviderKind.GEMINI
    mode: TradingMode = TradingMode.SIMULATED
    is_paused: bool = False


class AgentState(BaseModel):
    """Runtime state of one trading agent.

    Mutated only by the engine while holding the agent's lock.

    Attributes:
        id: Agent ID
        name: Display name
        prompt: Prompt template
        provider: Decision provider kind
        mode: Simulated or live
        portfolio: Current portfolio
        orders: Trade records (oldest first)
        turn_logs: Turn history (newest first, bounded)
        value_history: Total-value series (oldest first, bounded)
        is_paused: Suppresses decision turns only
        is_loading: True while a turn is in flight
        symbol_cooldowns: symbol -> cooldown expiry
        realized_pnl: Realized PnL accumulator
        trade_count: Closed trades
        win_rate: Fraction of closed trades with positive PnL
        initial_balance: Reference balance for return percentage
        last_sync_error: Last reconciliation warning, if any
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    id: str
    name: str
    prompt: str = ""
    provider: ProviderKind = ProviderKind.GEMINI
    mode: TradingMode = TradingMode.SIMULATED

    portfolio: Portfolio = Field(default_factory=Portfolio)
    orders: List[Order] = Field(default_factory=list)
    turn_logs: List[TurnLog] = Field(default_factory=list)
    value_history: List[ValuePoint] = Field(default_factory=list)

    is_paused: bool = False
    is_loading: bool = False
    symbol_cooldowns: Dict[str, datetime] = Field(default_factory=dict)

    realized_pnl: Decimal = Decimal("0")
    trade_count: int = 0
    win_rate: float = 0.0
    initial_balance: Optional[Decimal] = None
    last_sync_error: Optional[str] = None

    @classmethod
    def fresh(cls, config: AgentConfig, initial_balance: Decimal) -> "AgentState":
        """New agent with an empty ledger holding ``initial_balance``."""
        return cls(
            id=config.id,
            name=config.name,
            prompt=config.prompt,
            provider=config.provider,
            mode=config.mode,
            is_paused=config.is_paused,
            portfolio=Portfolio.fresh(initial_balance),
            value_history=[ValuePoint(value=initial_balance)],
            initial_balance=initial_balance if config.mode == TradingMode.SIMULATED else None,
        )

    @property
    def is_live(self) -> bool:
        return self.mode == TradingMode.LIVE

    @property
    def return_pct(self) -> Decimal:
        """Return on the reference balance in percent."""
        if not self.initial_balance:
            return Decimal("0")
        return (self.portfolio.total_value - self.initial_balance) / self.initial_balance * 100

    def append_turn_log(self, log: TurnLog, limit: int) -> None:
        """Prepend ``log`` and evict the oldest entries past ``limit``."""
        self.turn_logs = [log] + self.turn_logs[: max(limit - 1, 0)]

    def append_value_point(self, point: ValuePoint, limit: int) -> None:
        """Append ``point`` and keep the newest ``limit`` points."""
        self.value_history = (self.value_history + [point])[-limit:]

    def record_closed_trade(self, pnl: Decimal) -> None:
        """Update realized PnL, trade count and win rate for one close."""
        wins = round(self.win_rate * self.trade_count)
        self.trade_count += 1
        if pnl > 0:
            wins += 1
        self.realized_pnl += pnl
        self.win_rate = wins / self.trade_count
