"""Perpetual-futures venue client for the Trading Arena.

Each live agent trades from its own venue account, so this client keeps one
authenticated ccxt exchange per agent plus one unauthenticated exchange for
market metadata and public tickers.

Symbols are handled as venue ids (``BTCUSDT``) everywhere outside this module;
translation to ccxt unified symbols (``BTC/USDT:USDT``) happens here.
"""
import asyncio
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import ccxt.async_support as ccxt
import structlog

from arena.core.config import VenueConfig, venue_config
from arena.core.errors import ConfigurationError, ExecutionFailure, PositionNotFoundError
from arena.core.models import (
    Market,
    Order,
    OrderSide,
    Portfolio,
    Position,
    PositionSide,
    VenueOrderRequest,
    VenueOrderType,
)

logger = structlog.get_logger(__name__)

# Error text the venue returns when a reduce-only order has nothing to reduce
REDUCE_ONLY_REJECTED_MARKERS = ("ReduceOnly Order is rejected", "-2022")


class RetryConfig:
    """Configuration for retry logic."""
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_BASE_DELAY = 1.0  # seconds
    DEFAULT_MAX_DELAY = 30.0  # seconds
    DEFAULT_EXPONENTIAL_BASE = 2.0


def with_retry(
    max_retries: int = RetryConfig.DEFAULT_MAX_RETRIES,
    base_delay: float = RetryConfig.DEFAULT_BASE_DELAY,
    max_delay: float = RetryConfig.DEFAULT_MAX_DELAY,
    exponential_base: float = RetryConfig.DEFAULT_EXPONENTIAL_BASE,
    retryable_exceptions: tuple = (ccxt.NetworkError, ccxt.ExchangeNotAvailable, ccxt.RequestTimeout)
):
    """Retry a read-only venue call with exponential backoff.

    Order placement is never wrapped: a resubmitted market order could fill
    twice.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        retryable_exceptions: Tuple of exceptions that should trigger a retry
    """
    def decorator(func):
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except ccxt.RateLimitExceeded as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = min(base_delay * 10 * (2 ** attempt), max_delay * 10)
                        logger.warning(
                            f"{func.__name__}.rate_limit_hit",
                            attempt=attempt + 1,
                            delay=delay
                        )
                        await asyncio.sleep(delay)
                    else:
                        break
                except retryable_exceptions as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = min(
                            base_delay * (exponential_base ** attempt),
                            max_delay
                        )
                        logger.warning(
                            f"{func.__name__}.retry_attempt",
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            delay=delay,
                            error=str(e)
                        )
                        await asyncio.sleep(delay)
                    else:
                        break

            logger.error(
                f"{func.__name__}.max_retries_exceeded",
                max_retries=max_retries,
                last_error=str(last_exception)
            )
            raise last_exception

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator


class AgentCredentials:
    """API credentials of one agent's venue account."""

    def __init__(self, api_key: str, api_secret: str):
        self.api_key = api_key
        self.api_secret = api_secret

    @classmethod
    def resolve(cls, agent_id: str, config: VenueConfig) -> "AgentCredentials":
        """Per-agent environment pair first, then the default pair.

        Raises:
            ConfigurationError: If neither pair is set
        """
        prefix = agent_id.upper().replace("-", "_")
        api_key = os.getenv(f"{prefix}_API_KEY") or config.api_key
        api_secret = os.getenv(f"{prefix}_API_SECRET") or config.api_secret
        if not api_key or not api_secret:
            raise ConfigurationError(
                f"No venue credentials for agent '{agent_id}' "
                f"(set {prefix}_API_KEY / {prefix}_API_SECRET or VENUE_API_KEY / VENUE_API_SECRET)"
            )
        return cls(api_key, api_secret)


def _dec(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def precision_digits(amount_precision: Any) -> Optional[int]:
    """Convert ccxt amount precision to a number of decimal places.

    ccxt reports either a step size (0.001) or a digit count (3) depending
    on the exchange's precision mode.
    """
    if amount_precision is None:
        return None
    step = Decimal(str(amount_precision))
    if step <= 0:
        return None
    if step < 1:
        return max(-step.normalize().as_tuple().exponent, 0)
    if step == 1:
        return 0
    return int(step)


class VenueClient:
    """ccxt-backed perpetual-futures venue with one account per agent.

    Attributes:
        config: Venue configuration
        exchanges: Authenticated exchanges keyed by agent id
        _public: Unauthenticated exchange for markets and tickers
        _exchange_factory: Builds a ccxt exchange from its options dict
    """

    def __init__(
        self,
        config: Optional[VenueConfig] = None,
        exchange_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ):
        self.config = config or venue_config
        self.exchanges: Dict[str, Any] = {}
        self._public: Optional[Any] = None
        self._exchange_factory = exchange_factory or self._default_factory
        self._markets_loaded = False

    def _default_factory(self, options: Dict[str, Any]) -> Any:
        exchange_class = getattr(ccxt, self.config.exchange_id)
        return exchange_class(options)

    def _build_exchange(self, credentials: Optional[AgentCredentials] = None) -> Any:
        options: Dict[str, Any] = {
            "enableRateLimit": True,
            "timeout": self.config.timeout_ms,
            "options": {
                "defaultType": "future",
                "adjustForTimeDifference": True,
            },
        }
        if credentials:
            options["apiKey"] = credentials.api_key
            options["secret"] = credentials.api_secret
        exchange = self._exchange_factory(options)
        if self.config.sandbox:
            exchange.set_sandbox_mode(True)
        return exchange

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _ensure_markets(self) -> Any:
        if self._public is None:
            self._public = self._build_exchange()
        if not self._markets_loaded:
            await self._public.load_markets()
            self._markets_loaded = True
            logger.info(
                "venue_client.markets_loaded",
                exchange=self.config.exchange_id,
                count=len(getattr(self._public, "markets", None) or {}),
            )
        return self._public

    def _get_exchange(self, agent_id: str) -> Any:
        """Authenticated exchange for an agent, created on first use."""
        if agent_id not in self.exchanges:
            credentials = AgentCredentials.resolve(agent_id, self.config)
            self.exchanges[agent_id] = self._build_exchange(credentials)
            logger.info("venue_client.account_attached", agent_id=agent_id)
        return self.exchanges[agent_id]

    async def close(self):
        """Close all exchange connections."""
        exchanges = list(self.exchanges.items())
        if self._public is not None:
            exchanges.append(("public", self._public))

        await asyncio.gather(
            *(self._close_exchange(name, exchange) for name, exchange in exchanges),
            return_exceptions=True,
        )
        self.exchanges.clear()
        self._public = None
        self._markets_loaded = False
        logger.info("venue_client.closed")

    async def _close_exchange(self, name: str, exchange: Any):
        try:
            await exchange.close()
        except Exception as e:
            logger.warning("venue_client.close_error", account=name, error=str(e))

    # =========================================================================
    # Symbols
    # =========================================================================

    def to_unified(self, symbol: str) -> str:
        """Map a venue id (BTCUSDT) to a ccxt unified symbol."""
        markets_by_id = getattr(self._public, "markets_by_id", None) or {}
        entry = markets_by_id.get(symbol)
        if isinstance(entry, list):
            entry = entry[0] if entry else None
        if entry and entry.get("symbol"):
            return entry["symbol"]

        quote = self.config.quote_asset
        if symbol.endswith(quote) and len(symbol) > len(quote):
            base = symbol[: -len(quote)]
            return f"{base}/{quote}:{quote}"
        return symbol

    def to_venue_id(self, unified: str, market: Optional[Dict[str, Any]] = None) -> str:
        """Map a ccxt unified symbol back to the venue id."""
        if market and market.get("id"):
            return market["id"]
        markets = getattr(self._public, "markets", None) or {}
        if unified in markets and markets[unified].get("id"):
            return markets[unified]["id"]
        return unified.split(":")[0].replace("/", "")

    # =========================================================================
    # Read-only calls
    # =========================================================================

    @with_retry()
    async def get_symbol_precisions(self) -> Dict[str, int]:
        """Quantity precision (decimal places) per venue symbol id."""
        exchange = await self._ensure_markets()
        precisions: Dict[str, int] = {}
        for market in (exchange.markets or {}).values():
            digits = precision_digits((market.get("precision") or {}).get("amount"))
            if digits is not None and market.get("id"):
                precisions[market["id"]] = digits

        logger.debug("venue_client.precisions_loaded", count=len(precisions))
        return precisions

    @with_retry()
    async def fetch_markets(self, symbols: List[str]) -> List[Market]:
        """Public ticker snapshot for the given venue symbol ids."""
        exchange = await self._ensure_markets()
        unified = [self.to_unified(s) for s in symbols]
        tickers = await exchange.fetch_tickers(unified)

        markets = []
        for symbol, unified_symbol in zip(symbols, unified):
            ticker = tickers.get(unified_symbol)
            if not ticker or not ticker.get("last"):
                logger.warning("venue_client.ticker_missing", symbol=symbol)
                continue
            markets.append(Market(
                symbol=symbol,
                price=_dec(ticker["last"]),
                change_24h=_dec(ticker.get("percentage")),
            ))
        return markets

    @with_retry()
    async def get_account_state(self, agent_id: str) -> Portfolio:
        """Balance and open positions of an agent's venue account.

        Args:
            agent_id: Agent whose account to read

        Returns:
            Portfolio as reported by the venue
        """
        await self._ensure_markets()
        exchange = self._get_exchange(agent_id)
        quote = self.config.quote_asset

        try:
            balance = await exchange.fetch_balance()
            raw_positions = await exchange.fetch_positions()
        except Exception as e:
            logger.error("venue_client.account_state_error", agent_id=agent_id, error=str(e))
            raise

        info = balance.get("info") or {}
        available = _dec(
            info.get("availableBalance")
            if info.get("availableBalance") is not None
            else (balance.get("free") or {}).get(quote)
        )
        total_value = _dec(
            info.get("totalMarginBalance")
            if info.get("totalMarginBalance") is not None
            else (balance.get("total") or {}).get(quote)
        )
        unrealized = _dec(info.get("totalUnrealizedProfit"))

        positions = []
        for raw in raw_positions:
            contracts = _dec(raw.get("contracts"))
            if contracts == 0:
                continue
            raw_info = raw.get("info") or {}
            symbol = raw_info.get("symbol") or self.to_venue_id(raw.get("symbol", ""))
            side = PositionSide.SHORT if raw.get("side") == "short" else PositionSide.LONG
            entry_price = _dec(raw.get("entryPrice"))
            leverage = int(_dec(raw.get("leverage") or 1)) or 1
            margin = _dec(raw.get("initialMargin") or raw.get("collateral"))
            if margin == 0 and entry_price > 0:
                margin = abs(contracts) * entry_price / leverage
            if entry_price <= 0:
                continue

            positions.append(Position(
                id=f"{symbol}-{side.value}",
                symbol=symbol,
                side=side,
                entry_price=entry_price,
                size=margin,
                leverage=leverage,
                pnl=_dec(raw.get("unrealizedPnl")),
            ))

        if unrealized == 0:
            unrealized = sum((p.pnl for p in positions), Decimal("0"))

        logger.debug(
            "venue_client.account_state_fetched",
            agent_id=agent_id,
            total_value=str(total_value),
            positions=len(positions),
        )
        return Portfolio(
            balance=available,
            pnl=unrealized,
            total_value=total_value,
            positions=positions,
        )

    @with_retry()
    async def get_trade_history(self, agent_id: str, symbols: Optional[List[str]] = None) -> List[Order]:
        """Trade records of an agent's venue account, oldest first.

        Fills carrying realized PnL are closing records; the rest are opens.
        """
        await self._ensure_markets()
        exchange = self._get_exchange(agent_id)

        orders: List[Order] = []
        for symbol in symbols or []:
            trades = await exchange.fetch_my_trades(self.to_unified(symbol))
            for trade in trades:
                info = trade.get("info") or {}
                price = _dec(trade.get("price"))
                if price <= 0:
                    continue
                realized = _dec(info.get("realizedPnl"))
                fee = _dec((trade.get("fee") or {}).get("cost"))
                notional = _dec(trade.get("cost")) or price * _dec(trade.get("amount"))
                is_buy = trade.get("side") == "buy"

                if realized != 0:
                    # A buy that realizes PnL closes a short
                    side = PositionSide.SHORT if is_buy else PositionSide.LONG
                    orders.append(Order(
                        id=str(trade.get("id")),
                        symbol=symbol,
                        side=side,
                        entry_price=price,
                        exit_price=price,
                        size=notional,
                        pnl=realized,
                        fee=fee,
                        timestamp=_timestamp(trade),
                    ))
                else:
                    side = PositionSide.LONG if is_buy else PositionSide.SHORT
                    orders.append(Order(
                        id=str(trade.get("id")),
                        symbol=symbol,
                        side=side,
                        entry_price=price,
                        size=notional,
                        fee=fee,
                        timestamp=_timestamp(trade),
                    ))

        orders.sort(key=lambda o: o.timestamp)
        return orders

    # =========================================================================
    # Trading calls (no retry)
    # =========================================================================

    async def set_leverage(self, symbol: str, leverage: int, agent_id: str) -> None:
        """Set the account leverage for a symbol.

        Raises:
            ExecutionFailure: If the venue rejects the call
        """
        exchange = self._get_exchange(agent_id)
        try:
            await exchange.set_leverage(leverage, self.to_unified(symbol))
        except ccxt.BaseError as e:
            logger.error(
                "venue_client.leverage_error",
                agent_id=agent_id,
                symbol=symbol,
                leverage=leverage,
                error=str(e),
            )
            raise ExecutionFailure(str(e), symbol=symbol, leg="leverage") from e

        logger.info("venue_client.leverage_set", agent_id=agent_id, symbol=symbol, leverage=leverage)

    async def place_order(self, request: VenueOrderRequest, agent_id: str) -> Dict[str, Any]:
        """Submit an order for an agent.

        Args:
            request: Order to submit
            agent_id: Account to trade from

        Returns:
            Raw venue order response

        Raises:
            PositionNotFoundError: Reduce-only order had nothing to reduce
            ExecutionFailure: Any other venue rejection
        """
        exchange = self._get_exchange(agent_id)
        params: Dict[str, Any] = {}
        if request.reduce_only:
            params["reduceOnly"] = True
        if request.type != VenueOrderType.MARKET:
            params["stopPrice"] = float(request.stop_price)

        try:
            result = await exchange.create_order(
                symbol=self.to_unified(request.symbol),
                type=request.type.value,
                side=request.side.value.lower(),
                amount=float(request.quantity),
                price=None,
                params=params,
            )
        except ccxt.BaseError as e:
            message = str(e)
            logger.error(
                "venue_client.order_error",
                agent_id=agent_id,
                symbol=request.symbol,
                side=request.side.value,
                order_type=request.type.value,
                error=message,
            )
            if request.reduce_only and any(m in message for m in REDUCE_ONLY_REJECTED_MARKERS):
                raise PositionNotFoundError(message, symbol=request.symbol, leg="close") from e
            raise ExecutionFailure(message, symbol=request.symbol) from e

        logger.info(
            "venue_client.order_created",
            agent_id=agent_id,
            exchange_order_id=(result or {}).get("id"),
            symbol=request.symbol,
            side=request.side.value,
            order_type=request.type.value,
            quantity=str(request.quantity),
        )
        return result or {}


def _timestamp(trade: Dict[str, Any]) -> datetime:
    ms = trade.get("timestamp")
    if ms:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return datetime.now(timezone.utc)


def opposite_side(side: PositionSide) -> OrderSide:
    """Order side that reduces a position of ``side``."""
    return OrderSide.SELL if side == PositionSide.LONG else OrderSide.BUY


def opening_side(side: PositionSide) -> OrderSide:
    """Order side that opens a position of ``side``."""
    return OrderSide.BUY if side == PositionSide.LONG else OrderSide.SELL
