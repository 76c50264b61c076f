"""One-second redisplay tick for the running timer.

The ticker only reads the open interval's start time; cancelling it at any
point has no effect on stored state.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from labortracker.stats import elapsed_seconds, format_clock
from labortracker.timeutil import utcnow

logger = logging.getLogger(__name__)


class ElapsedTicker:
    """Calls ``on_tick`` with the elapsed ``MM:SS`` once per interval.

    Example:
        ticker = ElapsedTicker(store.current.start_time, print)
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(
        self,
        start_time: datetime,
        on_tick: Callable[[str], None],
        clock: Callable[[], datetime] = utcnow,
        interval: float = 1.0,
    ) -> None:
        self.start_time = start_time
        self.on_tick = on_tick
        self.interval = interval
        self._clock = clock
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> str:
        """Emit the current elapsed time once."""
        text = format_clock(elapsed_seconds(self.start_time, self._clock()))
        self.on_tick(text)
        return text

    async def _run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start ticking on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the tick and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.exception(f"Error in elapsed ticker: {e}")
        self._task = None
