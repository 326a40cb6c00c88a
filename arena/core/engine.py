"""Arena engine - orchestrates all agents and components."""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import structlog

from arena.core.config import ArenaConfig, arena_config
from arena.core.errors import AgentModeError, AgentNotFoundError
from arena.core.models import (
    AgentConfig,
    AgentState,
    DecisionAction,
    Market,
    ProviderKind,
    TradingMode,
    TurnLog,
)
from arena.core.scheduler import Scheduler
from arena.exchange.market_data import MarketDataFeed
from arena.exchange.venue_client import VenueClient
from arena.execution.base import ExecutionEngine
from arena.execution.live import LiveExecutor
from arena.execution.precision import PrecisionAdapter
from arena.execution.reconciliation import LiveReconciler, SimulatedReconciler
from arena.execution.simulated import SimulatedExecutor
from arena.providers import AgentContext, DecisionProvider, create_provider
from arena.risk.cooldown import CooldownTracker
from arena.risk.validation import ValidationPipeline
from arena.storage.database import Database

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArenaEngine:
    """
    Main arena engine that orchestrates all agents.

    Responsibilities:
    - Builds the agent fleet from the config store and saved state
    - Runs decision turns: propose, validate, execute, log
    - Keeps every agent's portfolio reconciled
    - Isolates failures per agent

    Every mutation of an agent happens under that agent's lock, so the
    refresh and turn cycles never interleave mid-update on the same agent.
    The slow provider call runs outside the lock against a snapshot.
    """

    def __init__(
        self,
        database: Database,
        venue: VenueClient,
        market_feed: MarketDataFeed,
        config: Optional[ArenaConfig] = None,
        provider_factory: Optional[Callable[[ProviderKind], DecisionProvider]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.database = database
        self.venue = venue
        self.market_feed = market_feed
        self.config = config or arena_config
        self.clock = clock or _utcnow
        self._provider_factory = provider_factory or (
            lambda kind: create_provider(kind, history_depth=self.config.prompt_history_depth)
        )

        # Risk
        self.cooldowns = CooldownTracker(
            duration=timedelta(minutes=self.config.symbol_cooldown_minutes),
            clock=self.clock,
        )
        self.validation = ValidationPipeline(
            cooldowns=self.cooldowns,
            minimum_size=self.config.minimum_trade_size_usd,
            default_max_leverage=self.config.default_max_leverage,
        )

        # Execution
        self.precision = PrecisionAdapter(default_precision=self.config.default_quantity_precision)
        self.simulated_executor = SimulatedExecutor(self.cooldowns, fee_pct=self.config.simulated_fee_pct)
        self.live_executor = LiveExecutor(
            venue,
            self.precision,
            self.cooldowns,
            minimum_size=self.config.minimum_trade_size_usd,
        )
        self.simulated_reconciler = SimulatedReconciler(self.config.value_history_limit)
        self.live_reconciler = LiveReconciler(
            venue,
            symbols=self.config.symbols,
            timeout=self.config.live_sync_timeout,
            value_history_limit=self.config.value_history_limit,
        )

        self.scheduler = Scheduler(
            refresh=self.run_refresh,
            turn=self.run_turn,
            refresh_interval=self.config.refresh_interval_seconds,
            turn_interval=self.config.turn_interval_seconds,
        )

        # State
        self._agents: Dict[str, AgentState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._providers: Dict[str, DecisionProvider] = {}
        self.markets: List[Market] = []
        self._initialized = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self):
        """Build the fleet and bring live agents in sync with the venue."""
        logger.info("engine.initializing")

        try:
            configs = await self.database.list_active_agents()
        except Exception as e:
            logger.error("engine.config_store_failed", error=str(e))
            configs = []
        if not configs:
            logger.warning("engine.no_active_agents", message="No active agents configured; running an empty fleet")

        if any(c.mode == TradingMode.LIVE for c in configs):
            await self._load_precisions()

        try:
            saved = {state.id: state for state in await self.database.load_state()}
        except Exception as e:
            logger.error("engine.state_load_failed", error=str(e))
            saved = {}

        for config in configs:
            self._add_agent(self._resume_or_create(config, saved.get(config.id)))

        live_agents = [a for a in self._agents.values() if a.is_live]
        if live_agents:
            await asyncio.gather(*(self._initial_sync(a) for a in live_agents))

        self._initialized = True
        logger.info(
            "engine.initialized",
            agents=len(self._agents),
            live=len(live_agents),
            resumed=sum(1 for c in configs if c.id in saved),
        )

    async def start(self):
        """Start the scheduler (initializing first if needed)."""
        if not self._initialized:
            await self.initialize()
        self.scheduler.start()
        logger.info("engine.started", agents=list(self._agents.keys()))

    async def stop(self):
        """Stop the scheduler, wait for in-flight work and save state."""
        logger.info("engine.stopping")
        await self.scheduler.stop()
        await self._save_state()
        logger.info("engine.stopped")

    async def _load_precisions(self):
        try:
            precisions = await asyncio.wait_for(
                self.venue.get_symbol_precisions(),
                timeout=self.config.precision_fetch_timeout,
            )
        except Exception as e:
            logger.warning(
                "engine.precisions_unavailable",
                error=str(e) or type(e).__name__,
                default_precision=self.precision.default_precision,
            )
            return
        self.precision.load(precisions)

    def _resume_or_create(self, config: AgentConfig, saved: Optional[AgentState]) -> AgentState:
        if saved is None or saved.mode != config.mode:
            return AgentState.fresh(config, self._initial_balance(config.mode))

        saved.name = config.name
        saved.prompt = config.prompt
        saved.provider = config.provider
        saved.is_paused = config.is_paused
        saved.is_loading = False
        return saved

    def _initial_balance(self, mode: TradingMode) -> Decimal:
        if mode == TradingMode.LIVE:
            return self.config.live_initial_balance
        return self.config.simulated_initial_balance

    def _add_agent(self, agent: AgentState):
        self._agents[agent.id] = agent
        self._locks.setdefault(agent.id, asyncio.Lock())
        self._providers[agent.id] = self._provider_factory(agent.provider)

    async def _initial_sync(self, agent: AgentState):
        async with self._locks[agent.id]:
            synced = await self.live_reconciler.sync(agent, timeout=self.config.live_sync_timeout)
        if not synced:
            logger.warning(
                "engine.initial_sync_failed",
                agent_id=agent.id,
                error=agent.last_sync_error,
            )

    async def _save_state(self):
        try:
            await self.database.save_state(self._agents.values())
        except Exception as e:
            logger.error("engine.state_save_failed", error=str(e))
            return
        logger.debug("engine.state_saved", agents=len(self._agents))

    # =========================================================================
    # Cycles
    # =========================================================================

    async def run_refresh(self):
        """Reconcile every agent, paused or not."""
        self.markets = await self.market_feed.fetch()
        await asyncio.gather(*(self._refresh_agent(a.id) for a in self.agents))

    async def _refresh_agent(self, agent_id: str):
        try:
            async with self._locks[agent_id]:
                agent = self._agents[agent_id]
                if agent.is_live:
                    await self.live_reconciler.sync(agent)
                else:
                    self.simulated_reconciler.refresh(agent, self.markets)
        except Exception as e:
            logger.error("engine.refresh_failed", agent_id=agent_id, error=str(e))

    async def run_turn(self):
        """Run one decision turn for every non-paused agent, one at a time."""
        self.markets = await self.market_feed.fetch()
        markets = list(self.markets)
        logger.info("engine.turn_started", agents=len(self._agents), markets=len(markets))

        for agent_id in list(self._agents.keys()):
            agent = self._agents.get(agent_id)
            if agent is None or agent.is_paused:
                continue
            try:
                await self._run_agent_turn(agent_id, markets)
            except Exception as e:
                logger.error("engine.agent_turn_failed", agent_id=agent_id, error=str(e))

        await self._save_state()
        logger.info("engine.turn_completed")

    async def _run_agent_turn(self, agent_id: str, markets: List[Market]):
        lock = self._locks[agent_id]
        provider = self._providers[agent_id]

        async with lock:
            agent = self._agents[agent_id]
            agent.is_loading = True
            snapshot = agent.portfolio.model_copy(deep=True)
            context = AgentContext(
                agent_id=agent.id,
                prompt=agent.prompt,
                recent_logs=list(agent.turn_logs[: self.config.prompt_history_depth]),
                cooldowns=dict(agent.symbol_cooldowns),
                orders=list(agent.orders),
                now=self.clock(),
            )

        try:
            proposal = await provider.propose(snapshot, markets, context)

            async with lock:
                # A reset during the provider call replaces the state object
                agent = self._agents[agent_id]
                notes: List[str] = []
                if proposal.error:
                    notes.append(f"ERROR: Decision provider failed: {proposal.error}")

                decisions = [d for d in proposal.decisions if d.action != DecisionAction.HOLD]
                result = self.validation.validate(agent, decisions)
                notes.extend(result.notes)

                executor = self._executor_for(agent)
                notes.extend(await executor.execute(agent, result.accepted, markets))

                if agent.is_live and result.accepted:
                    if not await self.live_reconciler.sync(agent):
                        notes.append(f"WARNING: Post-trade sync failed: {agent.last_sync_error}")

                agent.append_turn_log(
                    TurnLog(
                        timestamp=self.clock(),
                        decisions=proposal.decisions,
                        prompt=proposal.prompt,
                        notes=notes,
                    ),
                    self.config.turn_log_limit,
                )
                logger.info(
                    "engine.agent_turn_completed",
                    agent_id=agent.id,
                    proposed=len(proposal.decisions),
                    accepted=len(result.accepted),
                    notes=len(notes),
                )
        finally:
            async with lock:
                self._agents[agent_id].is_loading = False

    def _executor_for(self, agent: AgentState) -> ExecutionEngine:
        return self.live_executor if agent.is_live else self.simulated_executor

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def agents(self) -> List[AgentState]:
        return list(self._agents.values())

    def get_agent(self, agent_id: str) -> AgentState:
        """Look up an agent.

        Raises:
            AgentNotFoundError: Unknown id
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Unknown agent '{agent_id}'")
        return agent

    async def reset_agent(self, agent_id: str) -> AgentState:
        """Restore a simulated agent to a fresh ledger.

        Name, prompt and provider are re-read from the config store so edits
        take effect on reset.

        Raises:
            AgentNotFoundError: Unknown id
            AgentModeError: The agent trades live
        """
        agent = self.get_agent(agent_id)
        if agent.is_live:
            raise AgentModeError(f"Agent '{agent_id}' trades live and cannot be reset")

        stored = await self._stored_config(agent_id)

        async with self._locks[agent_id]:
            current = self._agents[agent_id]
            config = AgentConfig(
                id=current.id,
                name=stored.name if stored else current.name,
                prompt=stored.prompt if stored else current.prompt,
                provider=stored.provider if stored else current.provider,
                mode=current.mode,
                is_paused=current.is_paused,
            )
            if config.provider != current.provider:
                self._providers[agent_id] = self._provider_factory(config.provider)
            fresh = AgentState.fresh(config, self.config.simulated_initial_balance)
            self._agents[agent_id] = fresh

        await self._save_state()
        logger.info("engine.agent_reset", agent_id=agent_id, balance=str(fresh.portfolio.balance))
        return fresh

    async def _stored_config(self, agent_id: str) -> Optional[AgentConfig]:
        try:
            configs = await self.database.list_active_agents()
        except Exception as e:
            logger.warning("engine.config_reload_failed", agent_id=agent_id, error=str(e))
            return None
        return next((c for c in configs if c.id == agent_id), None)

    async def manual_close_position(self, agent_id: str, position_id: str) -> List[str]:
        """Close one position outside a decision turn.

        Returns:
            Outcome notes
        """
        self.get_agent(agent_id)
        async with self._locks[agent_id]:
            agent = self._agents[agent_id]
            notes = await self._executor_for(agent).close_position(agent, position_id, self.markets)
            if agent.is_live and any(n.startswith("SUCCESS") for n in notes):
                await self.live_reconciler.sync(agent)
            elif not agent.is_live:
                self.simulated_reconciler.refresh(agent, self.markets)

        logger.info("engine.manual_close", agent_id=agent_id, position_id=position_id, notes=notes)
        await self._save_state()
        return notes

    def pause(self):
        """Pause both cycles engine-wide."""
        self.scheduler.pause()

    def resume(self):
        self.scheduler.resume()

    async def pause_agent(self, agent_id: str):
        """Skip this agent's decision turns; refresh continues."""
        await self._set_agent_paused(agent_id, True)

    async def resume_agent(self, agent_id: str):
        await self._set_agent_paused(agent_id, False)

    async def _set_agent_paused(self, agent_id: str, paused: bool):
        self.get_agent(agent_id)
        async with self._locks[agent_id]:
            self._agents[agent_id].is_paused = paused
        try:
            await self.database.set_bot_paused(agent_id, paused)
        except Exception as e:
            logger.error("engine.pause_persist_failed", agent_id=agent_id, error=str(e))
        logger.info("engine.agent_paused" if paused else "engine.agent_resumed", agent_id=agent_id)

    async def force_turn(self) -> bool:
        """Run a decision turn now unless one is already in flight."""
        return await self.scheduler.trigger_turn()

    def get_status(self) -> Dict:
        """Get current engine status."""
        return {
            'scheduler': self.scheduler.get_status(),
            'markets': {m.symbol: str(m.price) for m in self.markets},
            'agents': {
                agent.id: {
                    'name': agent.name,
                    'mode': agent.mode.value,
                    'provider': agent.provider.value,
                    'paused': agent.is_paused,
                    'loading': agent.is_loading,
                    'balance': str(agent.portfolio.balance),
                    'total_value': str(agent.portfolio.total_value),
                    'unrealized_pnl': str(agent.portfolio.pnl),
                    'realized_pnl': str(agent.realized_pnl),
                    'return_pct': f"{agent.return_pct:.2f}",
                    'positions': len(agent.portfolio.positions),
                    'trades': agent.trade_count,
                    'win_rate': round(agent.win_rate, 4),
                    'cooldowns': sorted(self.cooldowns.active(agent).keys()),
                    'last_sync_error': agent.last_sync_error,
                }
                for agent in self._agents.values()
            },
        }
