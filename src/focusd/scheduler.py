# focusd/scheduler.py
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Awaitable, Callable
import asyncio
import logging

logger = logging.getLogger(__name__)


class Clock:
    """Fixed-interval tick source.

    Owns no timer state; each firing awaits ``on_tick``, which is expected
    to do nothing more than enqueue the tick.
    """

    def __init__(self, interval: float, on_tick: Callable[[], Awaitable[None]]):
        self.interval = interval
        self.on_tick = on_tick
        self.scheduler = None
        self._ticking = False

    def start(self):
        """Start ticking on the running event loop."""
        self.scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self.scheduler.add_job(
            self._fire,
            IntervalTrigger(seconds=self.interval),
            id="timer_tick",
            replace_existing=True,
            coalesce=False,
            max_instances=1,
            misfire_grace_time=None,
        )
        self._ticking = True
        self.scheduler.start()
        logger.info(f"Clock started ({self.interval}s interval)")

    def stop(self):
        """Stop ticking. Safe to call more than once."""
        # Runs already handed to the executor still call _fire
        self._ticking = False
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Clock stopped")
        self.scheduler = None

    async def _fire(self):
        if not self._ticking:
            logger.debug("Dropping tick dispatched before stop")
            return
        await self.on_tick()

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running
