"""Database storage for agent configuration and arena state.

Three tables:
- ``llm_providers``: decision provider definitions
- ``bots``: agents with their prompt, provider and trading mode
- ``arena_state``: JSON snapshot of each agent's ledger for crash-resume
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import structlog
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from arena.core.config import database_config
from arena.core.models import AgentConfig, AgentState, TradingMode
from arena.providers import resolve_kind

logger = structlog.get_logger(__name__)

Base = declarative_base()

# Stored trading_mode values
MODE_PAPER = "paper"
MODE_REAL = "real"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderModel(Base):
    """SQLAlchemy model for decision providers."""
    __tablename__ = 'llm_providers'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    provider_type = Column(String, nullable=False)
    api_endpoint = Column(String, nullable=True)
    model_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class BotModel(Base):
    """SQLAlchemy model for agents."""
    __tablename__ = 'bots'

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    prompt = Column(Text, nullable=False)
    provider_id = Column(Integer, ForeignKey('llm_providers.id'), nullable=False)
    trading_mode = Column(String, nullable=False, default=MODE_PAPER)
    is_active = Column(Boolean, default=True)
    is_paused = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ArenaStateModel(Base):
    """SQLAlchemy model for persisted agent state."""
    __tablename__ = 'arena_state'

    agent_id = Column(String, primary_key=True)
    state_json = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


def mode_from_stored(value: Optional[str]) -> TradingMode:
    """'real'/'live' are live; anything else trades on the simulated ledger."""
    if value in (MODE_REAL, TradingMode.LIVE.value):
        return TradingMode.LIVE
    return TradingMode.SIMULATED


def mode_to_stored(mode: TradingMode) -> str:
    return MODE_REAL if mode == TradingMode.LIVE else MODE_PAPER


class Database:
    """Async database interface: config store and persisted state."""

    def __init__(self, database_url: Optional[str] = None):
        # Convert SQLite URL to async version if needed
        db_url = database_url or database_config.database_url
        if db_url.startswith('sqlite:///') and not db_url.startswith('sqlite+aiosqlite:///'):
            db_url = db_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        engine_kwargs = {"echo": False}
        if ":memory:" in db_url:
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self.url = db_url
        self.engine: AsyncEngine = create_async_engine(db_url, **engine_kwargs)
        self.session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def initialize(self):
        """Create tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.initialized", url=self.url.split("///")[0])

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    # =========================================================================
    # Config store
    # =========================================================================

    async def list_active_agents(self) -> List[AgentConfig]:
        """Active agents joined with their provider type."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(BotModel, ProviderModel.provider_type)
                .join(ProviderModel, BotModel.provider_id == ProviderModel.id)
                .where(BotModel.is_active.is_(True))
                .order_by(BotModel.created_at, BotModel.id)
            )
            return [
                AgentConfig(
                    id=bot.id,
                    name=bot.name,
                    prompt=bot.prompt,
                    provider=resolve_kind(provider_type),
                    mode=mode_from_stored(bot.trading_mode),
                    is_paused=bool(bot.is_paused),
                )
                for bot, provider_type in result.all()
            ]

    async def upsert_provider(
        self,
        name: str,
        provider_type: str,
        api_endpoint: Optional[str] = None,
        model_name: Optional[str] = None,
    ) -> int:
        """Create or update a provider by name and return its id."""
        async with self.session_maker() as session:
            result = await session.execute(select(ProviderModel).where(ProviderModel.name == name))
            provider = result.scalar_one_or_none()
            if provider is None:
                provider = ProviderModel(name=name)
                session.add(provider)
            provider.provider_type = provider_type
            provider.api_endpoint = api_endpoint
            provider.model_name = model_name
            provider.is_active = True
            await session.commit()
            return provider.id

    async def upsert_bot(
        self,
        bot_id: str,
        name: str,
        prompt: str,
        provider_id: int,
        mode: TradingMode = TradingMode.SIMULATED,
        is_active: bool = True,
        is_paused: bool = False,
    ):
        """Create or update an agent definition."""
        async with self.session_maker() as session:
            bot = await session.get(BotModel, bot_id)
            if bot is None:
                bot = BotModel(id=bot_id)
                session.add(bot)
            bot.name = name
            bot.prompt = prompt
            bot.provider_id = provider_id
            bot.trading_mode = mode_to_stored(mode)
            bot.is_active = is_active
            bot.is_paused = is_paused
            await session.commit()

        logger.info("database.bot_saved", bot_id=bot_id, mode=mode.value)

    async def set_bot_paused(self, bot_id: str, is_paused: bool) -> bool:
        """Persist an agent's pause flag. Returns False for unknown ids."""
        async with self.session_maker() as session:
            bot = await session.get(BotModel, bot_id)
            if bot is None:
                return False
            bot.is_paused = is_paused
            await session.commit()
            return True

    # =========================================================================
    # Persisted state
    # =========================================================================

    async def load_state(self) -> List[AgentState]:
        """Saved agent states; unreadable snapshots are skipped."""
        async with self.session_maker() as session:
            result = await session.execute(select(ArenaStateModel))
            rows = result.scalars().all()

        states = []
        for row in rows:
            try:
                state = AgentState.model_validate(row.state_json)
            except ValueError as e:
                logger.warning("database.state_unreadable", agent_id=row.agent_id, error=str(e))
                continue
            state.is_loading = False
            states.append(state)
        return states

    async def save_state(self, agents: Iterable[AgentState]):
        """Upsert a snapshot per agent."""
        async with self.session_maker() as session:
            for agent in agents:
                payload = agent.model_dump(mode="json", exclude={"is_loading"})
                row = await session.get(ArenaStateModel, agent.id)
                if row is None:
                    session.add(ArenaStateModel(agent_id=agent.id, state_json=payload))
                else:
                    row.state_json = payload
            await session.commit()
