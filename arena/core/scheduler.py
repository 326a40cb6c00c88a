"""Timer-driven scheduler for the refresh and decision-turn cycles."""
import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

CycleCallback = Callable[[], Awaitable[None]]


class Cycle:
    """One repeating cycle.

    Attributes:
        name: Cycle name used in logs
        callback: Coroutine function run on every tick
        interval: Seconds between ticks
        runs: Completed runs
        skipped: Ticks skipped because the previous run was still in flight
    """

    def __init__(self, name: str, callback: CycleCallback, interval: float):
        self.name = name
        self.callback = callback
        self.interval = interval
        self.runs = 0
        self.skipped = 0
        self.timer: Optional[asyncio.Task] = None
        self.in_flight: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


class Scheduler:
    """
    Drives the refresh and decision-turn cycles on independent timers.

    - A tick that comes due while the previous run of the same cycle is
      still in flight is skipped
    - Global pause stops new ticks of both cycles; in-flight work finishes
    - ``stop()`` cancels the timers and waits for in-flight work
    - Exceptions escaping a callback are logged and never stop the timer

    Per-agent pause is not handled here; the turn callback checks it when
    it dispatches each agent.
    """

    def __init__(
        self,
        refresh: CycleCallback,
        turn: CycleCallback,
        refresh_interval: float,
        turn_interval: float,
    ):
        self.refresh = Cycle("refresh", refresh, refresh_interval)
        self.turn = Cycle("turn", turn, turn_interval)
        self._running = False
        self._paused = False

    @property
    def cycles(self) -> List[Cycle]:
        return [self.refresh, self.turn]

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    def start(self):
        """Start both timers; the refresh cycle fires immediately."""
        if self._running:
            return
        self._running = True
        self.refresh.timer = asyncio.create_task(self._timer(self.refresh, immediate=True))
        self.turn.timer = asyncio.create_task(self._timer(self.turn, immediate=False))
        logger.info(
            "scheduler.started",
            refresh_interval=self.refresh.interval,
            turn_interval=self.turn.interval,
        )

    async def stop(self):
        """Cancel the timers, then wait for work already in flight."""
        if not self._running:
            return
        self._running = False

        timers = [c.timer for c in self.cycles if c.timer]
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

        in_flight = [c.in_flight for c in self.cycles if c.busy]
        if in_flight:
            logger.info("scheduler.draining", tasks=len(in_flight))
            await asyncio.gather(*in_flight, return_exceptions=True)

        for cycle in self.cycles:
            cycle.timer = None
        logger.info("scheduler.stopped")

    def pause(self):
        self._paused = True
        logger.info("scheduler.paused")

    def resume(self):
        self._paused = False
        logger.info("scheduler.resumed")

    async def trigger_turn(self) -> bool:
        """Run a decision turn now. Returns False if one is already running."""
        return await self._trigger(self.turn)

    async def trigger_refresh(self) -> bool:
        """Run a refresh now. Returns False if one is already running."""
        return await self._trigger(self.refresh)

    async def _trigger(self, cycle: Cycle) -> bool:
        task = self._dispatch(cycle)
        if task is None:
            return False
        await task
        return True

    async def _timer(self, cycle: Cycle, immediate: bool):
        if immediate and not self._paused:
            self._dispatch(cycle)
        while True:
            await asyncio.sleep(cycle.interval)
            if self._paused:
                continue
            self._dispatch(cycle)

    def _dispatch(self, cycle: Cycle) -> Optional[asyncio.Task]:
        if cycle.busy:
            cycle.skipped += 1
            logger.warning("scheduler.tick_skipped", cycle=cycle.name, skipped=cycle.skipped)
            return None
        cycle.in_flight = asyncio.create_task(self._run(cycle))
        return cycle.in_flight

    async def _run(self, cycle: Cycle):
        try:
            await cycle.callback()
        except Exception as e:
            logger.error("scheduler.cycle_error", cycle=cycle.name, error=str(e), error_type=type(e).__name__)
        finally:
            cycle.runs += 1

    def get_status(self) -> Dict:
        return {
            "running": self._running,
            "paused": self._paused,
            "cycles": {
                c.name: {
                    "interval": c.interval,
                    "runs": c.runs,
                    "skipped": c.skipped,
                    "busy": c.busy,
                }
                for c in self.cycles
            },
        }
