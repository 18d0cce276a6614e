"""Background loop that sweeps due settlement jobs on a fixed cadence."""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

class SweepLoop:
    """Calls ``scheduler.sweep()`` every ``interval`` seconds until stopped."""

    def __init__(self, scheduler, interval: float = 60, sleep=asyncio.sleep) -> None:
        self.scheduler = scheduler
        self.interval = interval
        self._sleep = sleep
        self._stop_requested = False
        self.sweeps = 0

    def stop(self) -> None:
        """Signal the loop to stop after the current sweep."""
        self._stop_requested = True

    async def run(self, max_sweeps: Optional[int] = None) -> None:
        logger.info(f"Settlement sweep loop starting (every {self.interval}s)")
        completed = 0

        while not self._stop_requested:
            try:
                await self.scheduler.sweep()
            except Exception as e:
                logger.error(f"Error in sweep loop: {e}")

            self.sweeps += 1
            completed += 1
            if max_sweeps is not None and completed >= max_sweeps:
                break
            if self._stop_requested:
                break
            await self._sleep(self.interval)

        logger.info("Settlement sweep loop stopped")
