import asyncio
import logging
from typing import Callable, List

from sweeper import Sweeper

logger = logging.getLogger(__name__)


class SweepScheduler:
    """Runs the short and long sweeps on their own fixed intervals.

    Each sweep executes in a worker thread so the event loop keeps serving
    requests. The two loops are independent and may overlap.
    """

    def __init__(self, sweeper: Sweeper, short_interval: float, long_interval: float) -> None:
        self.sweeper = sweeper
        self.short_interval = short_interval
        self.long_interval = long_interval
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._every(self.short_interval, self.sweeper.run_short_sweep, "short")),
            asyncio.create_task(self._every(self.long_interval, self.sweeper.run_long_sweep, "long")),
        ]
        logger.info(
            "Sweeps scheduled every %ss (short) and %ss (long)",
            self.short_interval, self.long_interval,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _every(self, interval: float, sweep: Callable[[], object], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(sweep)
            except Exception:
                logger.exception("%s sweep failed", name.capitalize())

