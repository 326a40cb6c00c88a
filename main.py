"""
Trading Arena - Main Entry Point

A fleet of AI-advised trading agents on simulated and live perpetual futures.

Usage:
    # Check configuration
    python main.py --check

    # Initialize database
    python main.py --init-db

    # Register an agent
    python main.py --seed-agent grok-scalper --name "Grok Scalper" \\
        --provider grok --agent-mode simulated --prompt-file prompts/scalper.txt

    # Show agent status (one refresh, no decision turns)
    python main.py --status

    # Run the arena until SIGINT / SIGTERM
    python main.py
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Dict, Optional

import structlog

from arena.core.config import arena_config, settings
from arena.core.engine import ArenaEngine
from arena.core.models import ProviderKind, TradingMode
from arena.exchange.market_data import MarketDataFeed
from arena.exchange.venue_client import VenueClient
from arena.storage.database import Database
from arena.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


class ArenaApp:
    """
    Main application wiring the arena's components together.

    Owns the database, venue client and engine, and shuts them down in
    reverse order.
    """

    def __init__(self):
        self.database: Optional[Database] = None
        self.venue: Optional[VenueClient] = None
        self.engine: Optional[ArenaEngine] = None

        self._shutdown_event = asyncio.Event()
        self._initialized = False

    async def initialize(self):
        """Initialize all components based on configuration."""
        logger.info(
            "app.initializing",
            environment=settings.system.environment,
            symbols=arena_config.symbols,
            exchange=settings.venue.exchange_id,
        )

        self.database = Database()
        await self.database.initialize()

        self.venue = VenueClient()
        market_feed = MarketDataFeed(self.venue, arena_config.symbols)

        self.engine = ArenaEngine(self.database, self.venue, market_feed)
        await self.engine.initialize()

        self._initialized = True
        logger.info("app.initialized", agents=len(self.engine.agents))

    async def run(self):
        """Run until a shutdown signal arrives."""
        if not self._initialized:
            raise RuntimeError("App not initialized. Call initialize() first.")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        try:
            await self.engine.start()
            await self._shutdown_event.wait()
        except Exception as e:
            logger.error("app.error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Perform graceful shutdown."""
        logger.info("app.shutting_down")

        if self.engine:
            await self.engine.stop()

        if self.venue:
            await self.venue.close()

        if self.database:
            await self.database.close()

        logger.info("app.shutdown_complete")

    def _signal_handler(self):
        logger.info("app.shutdown_signal_received")
        self._shutdown_event.set()

    async def get_status(self) -> Dict:
        """Refresh once and report every agent."""
        await self.engine.run_refresh()
        return self.engine.get_status()


def check_configuration() -> Dict:
    """
    Check if configuration is valid.

    Returns:
        Dictionary with validation results
    """
    validation = settings.validate_configuration()
    warnings = []

    if not settings.venue.has_default_credentials:
        warnings.append(
            "No default venue credentials; live agents need <AGENT_ID>_API_KEY / _API_SECRET"
        )
    if settings.venue.sandbox:
        warnings.append(f"Venue sandbox mode enabled ({settings.venue.exchange_id})")

    return {
        "valid": validation["valid"],
        "issues": validation["issues"],
        "warnings": warnings,
        "symbols": arena_config.symbols,
        "turn_interval": arena_config.turn_interval_seconds,
        "refresh_interval": arena_config.refresh_interval_seconds,
    }


def print_status(status: Dict):
    """Print formatted status output."""
    print("\n" + "=" * 60)
    print("           TRADING ARENA - STATUS")
    print("=" * 60)

    markets = status.get("markets", {})
    if markets:
        print("\nMarkets:")
        for symbol, price in markets.items():
            print(f"   {symbol}: {price}")

    agents = status.get("agents", {})
    if not agents:
        print("\nNo active agents")
    for agent_id, agent in agents.items():
        flags = " (paused)" if agent["paused"] else ""
        print(f"\n{agent['name']} [{agent_id}] {agent['mode']}/{agent['provider']}{flags}")
        print(f"   Total value: {agent['total_value']} USDT ({agent['return_pct']}%)")
        print(f"   Balance: {agent['balance']}  Unrealized: {agent['unrealized_pnl']}")
        print(f"   Realized: {agent['realized_pnl']}  Trades: {agent['trades']}  Win rate: {agent['win_rate']:.0%}")
        print(f"   Open positions: {agent['positions']}")
        if agent["cooldowns"]:
            print(f"   Cooldowns: {', '.join(agent['cooldowns'])}")
        if agent["last_sync_error"]:
            print(f"   Last sync error: {agent['last_sync_error']}")

    print("\n" + "=" * 60)


async def seed_agent(args) -> None:
    """Create or update one agent definition in the config store."""
    prompt = Path(args.prompt_file).read_text(encoding="utf-8")
    provider = ProviderKind(args.provider)

    db = Database()
    await db.initialize()
    try:
        provider_id = await db.upsert_provider(
            name=provider.value,
            provider_type=provider.value,
        )
        await db.upsert_bot(
            bot_id=args.seed_agent,
            name=args.name or args.seed_agent,
            prompt=prompt,
            provider_id=provider_id,
            mode=TradingMode(args.agent_mode),
        )
    finally:
        await db.close()
    print(f"Agent '{args.seed_agent}' saved ({provider.value}, {args.agent_mode})")


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Trading Arena - AI-advised trading agents"
    )

    # Actions
    parser.add_argument(
        "--status", action="store_true", help="Show agent status and exit"
    )
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--init-db", action="store_true", help="Initialize database and exit"
    )

    # Agent seeding
    parser.add_argument("--seed-agent", metavar="AGENT_ID", help="Create or update an agent and exit")
    parser.add_argument("--name", help="Display name for --seed-agent")
    parser.add_argument(
        "--provider",
        choices=[k.value for k in ProviderKind],
        default=ProviderKind.GEMINI.value,
        help="Decision provider for --seed-agent",
    )
    parser.add_argument(
        "--agent-mode",
        choices=[m.value for m in TradingMode],
        default=TradingMode.SIMULATED.value,
        help="Trading mode for --seed-agent",
    )
    parser.add_argument("--prompt-file", help="Prompt template file for --seed-agent")

    parser.add_argument("--log-level", help="Override LOG_LEVEL")

    args = parser.parse_args()

    setup_logging(level=args.log_level)

    config_check = check_configuration()
    for warning in config_check["warnings"]:
        print(warning)

    if args.check:
        print("\n" + "=" * 60)
        print("           CONFIGURATION CHECK")
        print("=" * 60)

        if config_check["valid"]:
            print("\nConfiguration is valid")
        else:
            print("\nConfiguration errors:")
            for issue in config_check["issues"]:
                print(f"   - {issue}")

        print(f"\nSymbols: {', '.join(config_check['symbols'])}")
        print(f"Turn interval: {config_check['turn_interval']}s")
        print(f"Refresh interval: {config_check['refresh_interval']}s")
        print("\n" + "=" * 60)
        return

    if args.init_db:
        print("\nInitializing database...")
        db = Database()
        await db.initialize()
        print("Database initialized successfully")
        await db.close()
        return

    if args.seed_agent:
        if not args.prompt_file:
            parser.error("--seed-agent requires --prompt-file")
        await seed_agent(args)
        return

    if not config_check["valid"]:
        print("\nConfiguration errors:")
        for issue in config_check["issues"]:
            print(f"   - {issue}")
        print("\nPlease check your .env file and try again.")
        sys.exit(1)

    app = ArenaApp()

    try:
        await app.initialize()

        if args.status:
            try:
                print_status(await app.get_status())
            finally:
                await app.shutdown()
            return

        await app.run()

    except KeyboardInterrupt:
        print("\n\nShutdown requested by user...")
    except Exception as e:
        logger.error("main.error", error=str(e), exc_info=True)
        print(f"\nFatal error: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
